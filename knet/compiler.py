"""
Layer compiler: expands a layer call into a flat instruction list.

Each instruction is a tuple (Op, in1, in2, ..., out) where Op is a primitive
operator and in1, ..., out are symbols naming registers.

Example:
    from knet.layers import wb
    from knet.compiler import Compiler

    Compiler().compile(wb('a', 'b', out=100))
    # (Par((100, 0), Gaussian(0, 0.01)), '##w#1')
    # (Dot(), '##w#1', 'a', '##y#0')
    # (Par((0,), Constant(0), {'out': 100}), '##b#2')
    # (Add(), '##b#2', '##y#0', 'b')

Calls to primitive operators are terminal and produce one tuple. Calls to
other layers are expanded through the registry and compiled recursively, so
the result is the depth-first, left-to-right flattening of the call tree.
"""

from __future__ import annotations
from typing import Any, Dict, List, Sequence, Tuple

from knet.errors import KnetError, MalformedExpression, UnresolvedCallee, MalformedCall
from knet.expr import (
    Block, Assignment, Call, Parameters, Symbol, Const, Deferred, LineMarker,
)
from knet.ops import Op
from knet.symbols import SymbolGenerator, namer as default_namer

Instruction = Tuple[Any, ...]


def is_instruction(x) -> bool:
    return isinstance(x, tuple) and len(x) >= 2 and isinstance(x[0], Op)


class _Frame:
    """Layer currently being expanded, for error context."""

    def __init__(self, layer: str):
        self.layer = layer
        self.lineno = None


class Compiler:
    """
    Compiles expression trees against a layer registry.

    Args:
        registry: LayerRegistry to resolve callee names (default: knet.registry.registry)
        namer: SymbolGenerator for fresh locals (default: knet.symbols.namer)
    """

    def __init__(self, registry=None, namer: SymbolGenerator = None):
        if registry is None:
            from knet.registry import registry
        self.registry = registry
        self.namer = namer or default_namer
        self._frames: List[_Frame] = []

    def compile_call(self, name: str, inputs: Sequence[str], output: str, /,
                     **params: Any) -> List[Instruction]:
        """
        Compile a top-level call: output = name(inputs...; params...).

        Args:
            name: Registered layer or primitive name
            inputs: Input symbols in order
            output: Output symbol
            **params: Keyword parameters passed to the layer
        """
        args = tuple(Symbol(s) for s in inputs)
        if params:
            entries = tuple((k, Const(v)) for k, v in params.items())
            args = (Parameters(entries),) + args
        self._frames = []
        return self.resolve_call(Call(name, args), Symbol(output))

    def compile(self, node) -> List[Instruction]:
        """
        Compile an expression node to a list of instruction tuples.

        Raises:
            MalformedExpression: node is not a Block, Assignment, LineMarker
                or instruction tuple
            UnresolvedCallee: a callee is not registered or its generator failed
            MalformedCall: a call's arguments are not well formed
        """
        if isinstance(node, Block):
            prog = []
            for stmt in node.statements:
                prog.extend(self.compile(stmt))
            return prog
        if isinstance(node, Assignment):
            if not isinstance(node.target, Symbol):
                raise self._context(MalformedExpression(
                    f"assignment target must be a symbol, got {node.target!r}"))
            if not isinstance(node.value, Call):
                raise self._context(MalformedExpression(
                    f"right-hand side of {node.target.name} must be a call, got {node.value!r}"))
            return self.resolve_call(node.value, node.target)
        if isinstance(node, LineMarker):
            if self._frames:
                self._frames[-1].lineno = node.lineno
            return []
        if isinstance(node, tuple):
            if is_instruction(node):
                return [node]
            raise self._context(MalformedExpression(
                f"tuple does not start with an operator: {node!r}"))
        raise self._context(MalformedExpression(f"cannot compile {type(node).__name__}: {node!r}"))

    def resolve_call(self, call: Call, out: Symbol) -> List[Instruction]:
        """Expand one call bound to out, recursing into composite layers."""
        callee = call.callee
        try:
            params, args = self._split_args(call)
            generator = self.registry.lookup(callee)
            if generator is None:
                raise UnresolvedCallee(f"'{callee}' is not a registered layer or operator",
                                       callee=callee)
            try:
                result = generator.expand(args, out.name, params, self.namer)
            except KnetError:
                raise
            except Exception as e:
                raise UnresolvedCallee(f"calling '{callee}' failed: {type(e).__name__}: {e}",
                                       callee=callee) from e
        except KnetError as e:
            raise self._context(e, callee)

        if generator.kind == "composite":
            self._frames.append(_Frame(callee))
            try:
                return self.compile(result)
            finally:
                self._frames.pop()
        return self.compile(result)

    def _split_args(self, call: Call) -> Tuple[Dict[str, Any], list]:
        params: Dict[str, Any] = {}
        args = []
        for i, arg in enumerate(call.args):
            if isinstance(arg, Parameters):
                if i != 0:
                    raise MalformedCall("parameters block must come right after the callee")
                for entry in arg.entries:
                    if not (isinstance(entry, tuple) and len(entry) == 2):
                        raise MalformedCall(f"bad keyword parameter entry {entry!r}")
                    name, value = entry
                    if name in params:
                        raise MalformedCall(f"keyword parameter '{name}' given more than once")
                    params[name] = self._value(value, call.callee)
            elif isinstance(arg, Symbol):
                args.append(arg.name)
            elif isinstance(arg, Const):
                args.append(arg.value)
            elif isinstance(arg, Deferred):
                args.append(self._value(arg, call.callee))
            else:
                raise MalformedCall(f"argument {i} must be a symbol or constant, got {arg!r}")
        return params, args

    @staticmethod
    def _value(node, callee: str = None):
        if isinstance(node, Const):
            return node.value
        if isinstance(node, Symbol):
            return node.name
        if isinstance(node, Deferred):
            try:
                return node.evaluate()
            except Exception as e:
                raise UnresolvedCallee(f"calling '{callee}' failed: cannot evaluate "
                                       f"'{node.source}': {type(e).__name__}: {e}",
                                       callee=callee) from e
        raise MalformedCall(f"keyword value must be a constant, got {node!r}")

    def _context(self, error: KnetError, callee: str = None) -> KnetError:
        frame = self._frames[-1] if self._frames else None
        if frame is None:
            return error.add_context(callee)
        return error.add_context(callee, frame.layer, frame.lineno)


def compile(node, registry=None, namer: SymbolGenerator = None) -> List[Instruction]:
    """Compile an expression node with a fresh Compiler."""
    return Compiler(registry, namer).compile(node)
