"""
Layer definitions for knet.

Layers are written as decorated Python functions whose body is a sequence of
assignments. The body is never executed; @layer reads its source and keeps it
as an expression template.

Example:
    @layer
    def wdot(x, out=0, winit=Gaussian(0, 0.01), **o):
        w = par(out, 0, init=winit, **o)
        y = dot(w, x)

    @layer
    def wb(x, **o):
        y = wdot(x, **o)
        z = bias(y, **o)

Positional parameters without defaults are input symbols, parameters with
defaults (and keyword-only ones) are keyword parameters, and the last
assigned local is the output. Calling the layer with symbols returns the
expanded Block:

    wb('a', 'b', out=100)
    # ##y#0 = wdot(a, out=100)
    # b = bias(##y#0, out=100)

Every call mints fresh names for the other locals, so a layer can be inlined
any number of times without name clashes.
"""

from __future__ import annotations
import ast
import functools
import inspect
import textwrap
from typing import Any, Callable, Dict, List, Optional, Sequence

from knet.errors import LayerDefinitionError, DuplicateOrMissingOutput, MalformedCall
from knet.expr import (
    Block, Assignment, Call, Parameters, Symbol, Const, Placeholder, Splat,
    Deferred, LineMarker,
)
from knet.ops import check_symbol
from knet.symbols import SymbolGenerator, namer as default_namer


class LayerDefinition:
    """
    Parsed form of a @layer function.

    Attributes:
        name: Layer name (callee name used by other layers)
        inputs: Input formal names, in order
        params: Keyword formal names -> default (inspect.Parameter.empty if required)
        kwargs: Name of the **kwargs formal, or None
        locals: Assigned local names, in body order; the last is the output
        template: Block with Placeholder leaves for every formal and local
    """

    def __init__(self, fn: Callable, name: str = None):
        self.fn = fn
        self.name = name or fn.__name__
        self.signature = inspect.signature(fn)
        self.inputs: List[str] = []
        self.params: Dict[str, Any] = {}
        self.kwargs: Optional[str] = None
        self.locals: List[str] = []
        self._read_signature()

        self.filename = fn.__code__.co_filename
        self._cells = dict(zip(fn.__code__.co_freevars, fn.__closure__ or ()))
        self.template = self._read_body()
        self.output = self.locals[-1]

    # ------------------------------------------------------------------
    # Definition time
    # ------------------------------------------------------------------

    def _error(self, cls, message, lineno=None):
        return cls(message, layer=self.name, lineno=lineno)

    def _read_signature(self):
        for pname, p in self.signature.parameters.items():
            if p.kind == p.VAR_POSITIONAL:
                raise self._error(LayerDefinitionError,
                                  f"*{pname} is not supported; inputs must be named")
            elif p.kind == p.VAR_KEYWORD:
                self.kwargs = pname
            elif p.kind == p.KEYWORD_ONLY or p.default is not p.empty:
                self.params[pname] = p.default
            else:
                self.inputs.append(pname)

    def _parse(self) -> ast.FunctionDef:
        try:
            source = textwrap.dedent(inspect.getsource(self.fn))
        except (OSError, TypeError) as e:
            raise self._error(LayerDefinitionError, f"cannot read source: {e}") from e
        tree = ast.parse(source)
        ast.increment_lineno(tree, self.fn.__code__.co_firstlineno - 1)
        fdef = tree.body[0]
        if not isinstance(fdef, ast.FunctionDef):
            raise self._error(LayerDefinitionError, "@layer expects a plain function")
        return fdef

    def _read_body(self) -> Block:
        fdef = self._parse()
        body = list(fdef.body)
        if body and isinstance(body[0], ast.Expr) and isinstance(body[0].value, ast.Constant) \
                and isinstance(body[0].value.value, str):
            body = body[1:]  # docstring

        assigns = []
        for stmt in body:
            if isinstance(stmt, ast.Pass):
                continue
            if not (isinstance(stmt, ast.Assign) and len(stmt.targets) == 1
                    and isinstance(stmt.targets[0], ast.Name)):
                raise self._error(LayerDefinitionError,
                                  f"expected 'name = call(...)', got: {ast.unparse(stmt)}",
                                  stmt.lineno)
            if not isinstance(stmt.value, ast.Call):
                raise self._error(LayerDefinitionError,
                                  f"right-hand side must be a call: {ast.unparse(stmt)}",
                                  stmt.lineno)
            assigns.append(stmt)

        if not assigns:
            raise self._error(DuplicateOrMissingOutput, "layer has no assignments", fdef.lineno)

        formals = set(self.inputs) | set(self.params) | {self.kwargs}
        for stmt in assigns:
            target = stmt.targets[0].id
            if target in formals:
                raise self._error(LayerDefinitionError,
                                  f"local '{target}' shadows a parameter", stmt.lineno)
            # every local names exactly one register
            if target in self.locals:
                raise self._error(DuplicateOrMissingOutput,
                                  f"local '{target}' is assigned more than once", stmt.lineno)
            self.locals.append(target)

        statements = []
        for stmt in assigns:
            statements.append(LineMarker(stmt.lineno, self.filename))
            statements.append(Assignment(Placeholder(stmt.targets[0].id),
                                         self._read_call(stmt.value)))
        return Block(tuple(statements))

    def closure(self) -> Dict[str, Any]:
        """Current values of the variables the layer function closes over."""
        values = {}
        for name, cell in self._cells.items():
            try:
                values[name] = cell.cell_contents
            except ValueError:
                continue  # not bound yet
        return values

    def _symbol_names(self):
        return set(self.inputs) | set(self.locals)

    def _read_call(self, node: ast.Call) -> Call:
        if not isinstance(node.func, ast.Name):
            raise self._error(MalformedCall, f"callee must be a name: {ast.unparse(node.func)}",
                              node.lineno)
        callee = node.func.id
        if callee in self.params:
            callee = Placeholder(callee)
        elif callee in self._symbol_names():
            raise self._error(MalformedCall, f"'{callee}' is a symbol, not a layer", node.lineno)

        entries = []
        for kw in node.keywords:
            if kw.arg is None:
                if self.kwargs is None:
                    raise self._error(MalformedCall, "layer has no **kwargs to forward",
                                      node.lineno)
                if not (isinstance(kw.value, ast.Name) and kw.value.id == self.kwargs):
                    raise self._error(MalformedCall,
                                      f"only **{self.kwargs} can be forwarded, got "
                                      f"**{ast.unparse(kw.value)}", node.lineno)
                entries.append(Splat(kw.value.id))
            else:
                entries.append((kw.arg, self._read_value(kw.value)))

        positional = []
        for arg in node.args:
            if isinstance(arg, ast.Starred):
                raise self._error(MalformedCall, f"*args are not supported: {ast.unparse(arg)}",
                                  node.lineno)
            positional.append(self._read_value(arg))

        args = tuple(positional)
        if entries:
            args = (Parameters(tuple(entries)),) + args
        return Call(callee, args)

    def _read_value(self, node: ast.expr):
        if isinstance(node, ast.Name):
            if node.id in self._symbol_names() or node.id in self.params or node.id == self.kwargs:
                return Placeholder(node.id)
        elif isinstance(node, ast.Constant):
            return Const(node.value)

        used = {n.id for n in ast.walk(node) if isinstance(n, ast.Name)}
        symbols = used & self._symbol_names()
        if symbols:
            raise self._error(MalformedCall,
                              f"argument '{ast.unparse(node)}' uses symbol(s) "
                              f"{sorted(symbols)} inside an expression", node.lineno)
        code = compile(ast.Expression(body=node), self.filename, "eval")
        return Deferred(ast.unparse(node), code, self.fn.__globals__)

    # ------------------------------------------------------------------
    # Generation time
    # ------------------------------------------------------------------

    def generate(self, args: Sequence[Any], output: str, params: Dict[str, Any],
                 namer: SymbolGenerator = None) -> Block:
        """Bind actual symbols and parameters, and return a fresh Block."""
        bound = self.signature.bind(*args, **params)
        bound.apply_defaults()
        env = dict(bound.arguments)
        for name in self.inputs:
            check_symbol(env[name], f"input '{name}' of {self.name}")
        check_symbol(output, f"output of {self.name}")
        return self.instantiate(env, output, namer or default_namer)

    def instantiate(self, env: Dict[str, Any], output: str, namer: SymbolGenerator) -> Block:
        """
        Copy the template, replacing formals with their bound values and
        locals with fresh symbols. The template itself is left untouched.
        """
        env = dict(env)
        for name in self.locals[:-1]:
            env[name] = namer.fresh(name)
        env[self.output] = output
        values = self.closure()
        values.update({k: env[k] for k in self.params})
        if self.kwargs is not None:
            values[self.kwargs] = env[self.kwargs]
        return _Substitution(env, self._symbol_names(), values)(self.template)

    def __repr__(self):
        return f"<layer {self.name}({', '.join(self.inputs)}) -> {self.output}>"


class _Substitution:
    """One pass over a template; returns a new tree."""

    def __init__(self, env, symbols, values):
        self.env = env
        self.symbols = symbols
        self.values = values

    def __call__(self, node):
        if isinstance(node, Block):
            return Block(tuple(self(s) for s in node.statements))
        if isinstance(node, Assignment):
            return Assignment(self(node.target), self(node.value))
        if isinstance(node, Call):
            callee = node.callee
            if isinstance(callee, Placeholder):
                callee = self.env[callee.name]
                if not isinstance(callee, str):
                    raise MalformedCall(f"callee parameter must name a layer, got {callee!r}")
            return Call(callee, tuple(self(a) for a in node.args))
        if isinstance(node, Parameters):
            entries = []
            for entry in node.entries:
                if isinstance(entry, Splat):
                    entries.extend((k, Const(v)) for k, v in self.env[entry.name].items())
                else:
                    entries.append((entry[0], self(entry[1])))
            return Parameters(tuple(entries))
        if isinstance(node, Placeholder):
            value = self.env[node.name]
            if node.name in self.symbols:
                return Symbol(value)
            return Const(value)
        if isinstance(node, Deferred):
            return node.bind(self.values)
        return node


class LayerFunction:
    """
    Callable returned by @layer.

    Calling it with input symbols and an output symbol returns the expanded
    Block; compile() returns the flat instruction list.
    """

    def __init__(self, definition: LayerDefinition, registry):
        self.definition = definition
        self.registry = registry
        functools.update_wrapper(self, definition.fn)

    @property
    def name(self) -> str:
        return self.definition.name

    def __call__(self, *symbols, **params) -> Block:
        if not symbols:
            raise TypeError(f"{self.name}() needs an output symbol")
        *inputs, output = symbols
        return self.definition.generate(inputs, output, params)

    def compile(self, *symbols, namer: SymbolGenerator = None, **params) -> list:
        """Compile a call of this layer: compile('a', 'b', out=100)."""
        from knet.compiler import Compiler
        if not symbols:
            raise TypeError(f"{self.name}.compile() needs an output symbol")
        *inputs, output = symbols
        compiler = Compiler(self.registry, namer)
        return compiler.compile_call(self.name, inputs, output, **params)


def layer(fn: Callable = None, *, registry=None, name: str = None):
    """
    Decorator defining a layer and registering it.

    Usage:
        @layer
        def bias(x, binit=Constant(0), **o):
            b = par(0, init=binit, **o)
            y = add(b, x)

        @layer(registry=my_registry, name="affine")
        def wb(x, **o): ...
    """
    def wrap(f):
        from knet.registry import registry as default_registry
        reg = registry if registry is not None else default_registry
        definition = LayerDefinition(f, name)
        reg.register_layer(definition)
        return LayerFunction(definition, reg)
    return wrap(fn) if fn is not None else wrap
