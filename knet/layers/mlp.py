"""
Fully connected layers built from wb.

The activation is passed by name (f='relu'), and is itself a callee.
"""

from knet.layer import layer
from knet.ops import drop
from knet.layers.linear import wb


@layer
def wf(x, f='relu', **o):
    """Affine layer followed by activation f."""
    y = wb(x, **o)
    z = f(y)


@layer
def drop_wf(x, pdrop=0.5, **o):
    """Dropout on the input, then wf."""
    d = drop(x, pdrop=pdrop)
    y = wf(d, **o)


@layer
def mlp2(x, hidden=64, out=10, f='relu', **o):
    """
    Two layer perceptron.

    The hidden layer uses activation f; the output layer is a softmax.
    """
    h = wf(x, out=hidden, f=f, **o)
    y = wf(h, out=out, f='soft', **o)
