"""
Expression tree for compiled layer bodies.

A layer generator returns a Block of Assignments. Each Assignment binds a
target Symbol to a Call of either a primitive operator or another layer:

    Block((
        LineMarker(2),
        Assignment(Symbol('##y#0'), Call('wdot', (Parameters((('out', Const(100)),)),
                                                  Symbol('a')))),
        LineMarker(3),
        Assignment(Symbol('b'), Call('bias', (Parameters((('out', Const(100)),)),
                                              Symbol('##y#0')))),
    ))

Placeholder, Splat and Deferred only appear in the templates kept by @layer.
LayerDefinition.instantiate() replaces Placeholder and Splat with concrete
nodes; Deferred survives until the call is resolved.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple, Union


@dataclass(frozen=True)
class Symbol:
    """A register name, bound or free."""
    name: str

    def __repr__(self) -> str:
        return f"Symbol({self.name!r})"


@dataclass(frozen=True)
class Const:
    """A literal value passed through to an operator constructor."""
    value: Any


@dataclass(frozen=True)
class Placeholder:
    """A formal parameter or local of a layer template, bound at instantiation."""
    name: str


@dataclass(frozen=True)
class Splat:
    """Forward of a **kwargs formal inside a parameters block."""
    name: str


@dataclass(frozen=True, eq=False)
class Deferred:
    """
    A non-literal expression from a layer body, e.g. ``init=Gaussian(0, 0.01)``
    or ``out * 2``.

    Formal parameters referenced by the expression are bound in ``namespace``
    at instantiation time; the expression itself is evaluated only when the
    enclosing call is resolved.
    """
    source: str
    code: Any
    globals: Dict[str, Any] = field(repr=False)
    namespace: Dict[str, Any] = field(default_factory=dict)

    def bind(self, namespace: Dict[str, Any]) -> Deferred:
        return Deferred(self.source, self.code, self.globals, dict(namespace))

    def evaluate(self) -> Any:
        return eval(self.code, {**self.globals, **self.namespace})


@dataclass(frozen=True)
class Parameters:
    """
    Keyword parameter block. Only legal as the leading argument of a Call.

    Entries are (name, value) pairs; templates may also hold Splat entries.
    """
    entries: Tuple[Any, ...] = ()

    def names(self):
        return [e[0] for e in self.entries if not isinstance(e, Splat)]


@dataclass(frozen=True)
class Call:
    callee: str
    args: Tuple[Any, ...] = ()

    @property
    def parameters(self):
        if self.args and isinstance(self.args[0], Parameters):
            return self.args[0]
        return None


@dataclass(frozen=True)
class Assignment:
    target: Union[Symbol, Placeholder]
    value: Any


@dataclass(frozen=True)
class LineMarker:
    """Source position marker; compiles to nothing."""
    lineno: int
    filename: str = None


@dataclass(frozen=True)
class Block:
    statements: Tuple[Any, ...] = ()

    def __iter__(self):
        return iter(self.statements)

    def __len__(self):
        return len(self.statements)

    def assignments(self):
        return [s for s in self.statements if isinstance(s, Assignment)]


Node = Union[Block, Assignment, Call, Symbol, LineMarker]


def format_node(node, indent: int = 0) -> str:
    """Render a node roughly the way it was written in the layer body."""
    pad = "    " * indent
    if isinstance(node, Block):
        return "\n".join(format_node(s, indent) for s in node.statements
                         if not isinstance(s, LineMarker))
    if isinstance(node, Assignment):
        return f"{pad}{format_node(node.target)} = {format_node(node.value)}"
    if isinstance(node, Call):
        positional, keywords = [], []
        for arg in node.args:
            if not isinstance(arg, Parameters):
                positional.append(format_node(arg))
                continue
            for entry in arg.entries:
                if isinstance(entry, Splat):
                    keywords.append(f"**{entry.name}")
                else:
                    keywords.append(f"{entry[0]}={format_node(entry[1])}")
        callee = node.callee if isinstance(node.callee, str) else format_node(node.callee)
        return f"{callee}({', '.join(positional + keywords)})"
    if isinstance(node, (Symbol, Placeholder)):
        return node.name
    if isinstance(node, Splat):
        return f"**{node.name}"
    if isinstance(node, Const):
        return repr(node.value)
    if isinstance(node, Deferred):
        return node.source
    return repr(node)
