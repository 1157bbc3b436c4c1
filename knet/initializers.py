"""
Weight initializers for Par operators.

The compiler never calls these; they ride along inside a Par as opaque values
and are used by whatever runtime allocates the weights.

Example:
    init = Gaussian(0, 0.01)
    w = init((100, 784))
"""

import numpy as np


class Initializer:
    """Base class. Subclasses return a float32 array of the requested shape."""

    def __call__(self, shape, rng=None):
        raise NotImplementedError

    def __eq__(self, other):
        return type(self) is type(other) and vars(self) == vars(other)

    def __hash__(self):
        return hash((type(self).__name__, tuple(sorted(vars(self).items()))))

    def __repr__(self):
        args = ", ".join(repr(v) for v in vars(self).values())
        return f"{type(self).__name__}({args})"


class Gaussian(Initializer):
    def __init__(self, mean=0.0, std=0.01):
        self.mean = mean
        self.std = std

    def __call__(self, shape, rng=None):
        rng = rng or np.random.default_rng()
        return rng.normal(self.mean, self.std, size=shape).astype(np.float32)


class Uniform(Initializer):
    def __init__(self, low=-0.05, high=0.05):
        self.low = low
        self.high = high

    def __call__(self, shape, rng=None):
        rng = rng or np.random.default_rng()
        return rng.uniform(self.low, self.high, size=shape).astype(np.float32)


class Constant(Initializer):
    def __init__(self, value=0.0):
        self.value = value

    def __call__(self, shape, rng=None):
        return np.full(shape, self.value, dtype=np.float32)


class Xavier(Initializer):
    """
    Glorot uniform initialization.

    For a (fan_out, fan_in) weight matrix, samples from U(-a, a) with
    a = sqrt(6 / (fan_in + fan_out)).
    """

    def __call__(self, shape, rng=None):
        rng = rng or np.random.default_rng()
        shape = tuple(shape)
        if len(shape) < 2:
            fan_in = fan_out = int(np.prod(shape)) if shape else 1
        else:
            fan_out, fan_in = shape[0], int(np.prod(shape[1:]))
        a = np.sqrt(6.0 / max(fan_in + fan_out, 1))
        return rng.uniform(-a, a, size=shape).astype(np.float32)
