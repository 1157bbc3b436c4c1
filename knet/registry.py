"""
Layer registry: maps callee names to layer generators.

Two kinds of generator exist:

    PrimitiveGenerator  wraps an operator constructor from knet.ops and
                        returns one instruction tuple (terminal case)
    CompositeGenerator  wraps a @layer definition and returns a Block that
                        the compiler expands recursively

The compiler takes a registry explicitly. The module-level ``registry`` is the
default one used by @layer and Net when none is given.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, Iterator, Optional, Sequence

from knet import ops
from knet.symbols import SymbolGenerator


class LayerGenerator:
    """Common interface of everything a callee name can resolve to."""

    kind = None

    def __init__(self, name: str):
        self.name = name

    def expand(self, args: Sequence[Any], output: str, params: Dict[str, Any],
               namer: SymbolGenerator):
        """
        Produce an instruction tuple or an expression tree for one call.

        Args:
            args: Positional arguments (input symbol names or constants)
            output: Symbol the call's result is bound to
            params: Keyword parameters, already evaluated
            namer: Source of fresh symbols for the generator's locals
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{self.kind} {self.name}>"


class PrimitiveGenerator(LayerGenerator):
    kind = "primitive"

    def __init__(self, name: str, constructor: Callable):
        super().__init__(name)
        self.constructor = constructor

    def expand(self, args, output, params, namer):
        return self.constructor(*args, output, **params)


class CompositeGenerator(LayerGenerator):
    kind = "composite"

    def __init__(self, name: str, definition):
        super().__init__(name)
        self.definition = definition

    def expand(self, args, output, params, namer):
        return self.definition.generate(args, output, params, namer)


class LayerRegistry:
    """
    Name -> LayerGenerator table.

    Populated when layers are defined; only read while compiling.
    """

    def __init__(self):
        self._generators: Dict[str, LayerGenerator] = {}

    @classmethod
    def standard(cls) -> LayerRegistry:
        """A registry holding the primitive operators of knet.ops."""
        reg = cls()
        for name, constructor in ops.PRIMITIVES.items():
            reg.register_primitive(name, constructor)
        return reg

    def register(self, generator: LayerGenerator) -> LayerGenerator:
        """Register a generator under its name, replacing any previous one."""
        self._generators[generator.name] = generator
        return generator

    def register_primitive(self, name: str, constructor: Callable) -> PrimitiveGenerator:
        return self.register(PrimitiveGenerator(name, constructor))

    def register_layer(self, definition) -> CompositeGenerator:
        return self.register(CompositeGenerator(definition.name, definition))

    def primitive(self, fn: Callable = None, *, name: str = None):
        """
        Decorator registering an operator constructor.

        Usage:
            @registry.primitive
            def scale(x, y, alpha=1.0):
                return (Scale(alpha), x, y)
        """
        def wrap(f):
            self.register_primitive(name or f.__name__, f)
            return f
        return wrap(fn) if fn is not None else wrap

    def lookup(self, name: str) -> Optional[LayerGenerator]:
        return self._generators.get(name)

    def unregister(self, name: str) -> Optional[LayerGenerator]:
        return self._generators.pop(name, None)

    def copy(self) -> LayerRegistry:
        reg = type(self)()
        reg._generators = dict(self._generators)
        return reg

    def names(self):
        return list(self._generators)

    def __contains__(self, name: str) -> bool:
        return name in self._generators

    def __getitem__(self, name: str) -> LayerGenerator:
        return self._generators[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._generators)

    def __len__(self) -> int:
        return len(self._generators)


registry = LayerRegistry.standard()
