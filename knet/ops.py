"""
Primitive operators and their constructors.

A primitive constructor is called by the compiler with the symbols of its
inputs followed by the symbol of its output, plus keyword parameters, and
returns a single instruction tuple:

    dot('w', 'x', 'y')                  -> (Dot(), 'w', 'x', 'y')
    par(100, 0, 'w', init=Gaussian())   -> (Par((100, 0), Gaussian(0, 0.01)), 'w')

These tuples are the terminal case of layer compilation.
"""

from __future__ import annotations
from typing import Any, Dict, Tuple

import numpy as np

from knet.errors import MalformedCall
from knet.initializers import Gaussian


class Op:
    """Base class of all primitive operators."""

    ninputs = 1

    @property
    def name(self) -> str:
        return type(self).__name__

    def __eq__(self, other):
        return type(self) is type(other) and self._key() == other._key()

    def __hash__(self):
        return hash((self.name, repr(self._key())))

    def _key(self) -> tuple:
        return ()

    def __repr__(self) -> str:
        return f"{self.name}({', '.join(map(repr, self._key()))})"


class Input(Op):
    """Pseudo operator marking a net input register."""
    ninputs = 0


class Par(Op):
    """
    Trainable weight array.

    Args:
        dims: Shape; zero entries are inferred from the input at run time
        init: Initializer used to fill the array
        **opts: Any further keywords forwarded by enclosing layers (e.g. lr)
    """
    ninputs = 0

    def __init__(self, dims: Tuple[int, ...], init=None, **opts: Any):
        self.dims = tuple(dims)
        self.init = init if init is not None else Gaussian(0, 0.01)
        self.opts: Dict[str, Any] = dict(opts)

    def _key(self):
        return (self.dims, self.init) + ((self.opts,) if self.opts else ())


class Arr(Op):
    """Constant array."""
    ninputs = 0

    def __init__(self, value):
        self.value = np.asarray(value, dtype=np.float32)

    def _key(self):
        return (self.value.shape, self.value.tobytes())

    def __repr__(self):
        return f"Arr(shape={self.value.shape})"


class Dot(Op):
    """Matrix product: y = x1 @ x2."""
    ninputs = 2


class Add(Op):
    """Elementwise (broadcasting) sum: y = x1 + x2."""
    ninputs = 2


class Mul(Op):
    """Elementwise product: y = x1 * x2."""
    ninputs = 2


class Relu(Op):
    pass


class Sigm(Op):
    pass


class Tanh(Op):
    pass


class Soft(Op):
    """Softmax over the first dimension."""
    pass


class Drop(Op):
    """Dropout with probability pdrop (identity at test time)."""

    def __init__(self, pdrop: float = 0.5):
        if not (0.0 <= pdrop < 1.0):
            raise ValueError(f"pdrop {pdrop} out of range [0, 1)")
        self.pdrop = pdrop

    def _key(self):
        return (self.pdrop,)


def check_symbol(value, label: str) -> str:
    if not isinstance(value, str):
        raise MalformedCall(f"{label} must be a symbol, got {value!r}")
    return value


def _instruction(op: Op, *symbols):
    for i, s in enumerate(symbols[:-1]):
        check_symbol(s, f"input {i + 1} of {op.name}")
    check_symbol(symbols[-1], f"output of {op.name}")
    return (op,) + symbols


def par(*args, init=None, **opts):
    """
    Weight parameter: par(d1, d2, ..., y; init=...)

    Positional arguments before the output symbol give the shape.
    """
    if not args:
        raise MalformedCall("par expects an output symbol")
    *dims, y = args
    for d in dims:
        if not isinstance(d, (int, np.integer)) or d < 0:
            raise MalformedCall(f"par dimension must be a non-negative int, got {d!r}")
    return _instruction(Par(tuple(int(d) for d in dims), init, **opts), y)


def arr(y, init=None):
    """Constant array: arr(y; init=array_like)"""
    if init is None:
        raise MalformedCall("arr requires init=<array>")
    return _instruction(Arr(init), y)


def dot(x1, x2, y):
    """y = x1 @ x2"""
    return _instruction(Dot(), x1, x2, y)


def add(x1, x2, y):
    """y = x1 + x2"""
    return _instruction(Add(), x1, x2, y)


def mul(x1, x2, y):
    """y = x1 .* x2"""
    return _instruction(Mul(), x1, x2, y)


def relu(x, y):
    return _instruction(Relu(), x, y)


def sigm(x, y):
    return _instruction(Sigm(), x, y)


def tanh(x, y):
    return _instruction(Tanh(), x, y)


def soft(x, y):
    return _instruction(Soft(), x, y)


def drop(x, y, pdrop=0.5):
    """Dropout: drop(x, y; pdrop=0.5)"""
    return _instruction(Drop(pdrop), x, y)


# Activation names accepted by layers taking f=...
ACTIVATIONS = ('relu', 'sigm', 'tanh', 'soft')

PRIMITIVES = {
    'par': par,
    'arr': arr,
    'dot': dot,
    'add': add,
    'mul': mul,
    'relu': relu,
    'sigm': sigm,
    'tanh': tanh,
    'soft': soft,
    'drop': drop,
}
