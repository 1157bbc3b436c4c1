"""
Affine layers.

Note: layer bodies are never executed. par, dot and add are imported so the
names read naturally; the compiler resolves them through the registry.
"""

from knet.initializers import Gaussian, Constant
from knet.layer import layer
from knet.ops import par, dot, add


@layer
def wdot(x, out=0, winit=Gaussian(0, 0.01), **o):
    """
    Weight multiplication: y = w * x

    Args:
        x: Input symbol
        out: Number of output units (0 infers from the input)
        winit: Initializer for w
    """
    w = par(out, 0, init=winit, **o)
    y = dot(w, x)


@layer
def bias(x, binit=Constant(0), **o):
    """Bias addition: y = b + x"""
    b = par(0, init=binit, **o)
    y = add(b, x)


@layer
def wb(x, **o):
    """Affine layer: z = w * x + b"""
    y = wdot(x, **o)
    z = bias(y, **o)
