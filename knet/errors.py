"""
Compilation errors for knet layer definitions.

Every error here is fatal to the compile call that raised it. They describe
mistakes in layer definitions, so they carry enough context (callee, enclosing
layer, source line) to locate the faulty definition.
"""

from __future__ import annotations
from typing import Optional


class KnetError(Exception):
    """Base class for all layer compilation errors."""

    def __init__(self, message: str, *, callee: Optional[str] = None,
                 layer: Optional[str] = None, lineno: Optional[int] = None):
        self.message = message
        self.callee = callee
        self.layer = layer
        self.lineno = lineno
        super().__init__(message)

    def add_context(self, callee: Optional[str] = None, layer: Optional[str] = None,
                    lineno: Optional[int] = None) -> KnetError:
        """Fill in missing context. Context set closer to the failure is kept."""
        if self.callee is None:
            self.callee = callee
        if self.layer is None:
            self.layer = layer
            self.lineno = lineno
        return self

    def __str__(self) -> str:
        where = []
        if self.layer is not None:
            loc = f"in layer '{self.layer}'"
            if self.lineno is not None:
                loc += f" at line {self.lineno}"
            where.append(loc)
        if self.callee is not None:
            where.append(f"calling '{self.callee}'")
        if not where:
            return self.message
        return f"{self.message} ({', '.join(where)})"


class MalformedExpression(KnetError):
    """An expression node has a shape the compiler does not accept."""
    pass


class UnresolvedCallee(KnetError):
    """A callee is not registered, or invoking its generator failed."""
    pass


class MalformedCall(KnetError):
    """A call's argument list is not well formed."""
    pass


class LayerDefinitionError(KnetError):
    """Raised by @layer when a function body cannot be turned into a layer."""
    pass


class DuplicateOrMissingOutput(LayerDefinitionError):
    """A layer has no assignments, or its output local is ambiguous."""
    pass
