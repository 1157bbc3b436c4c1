"""
Standard layers for knet.

Importing this package registers the layers in the default registry.

Usage:
    from knet.layers import wb
    from knet.net import Net

    net = Net(wb, params={"out": 100})
"""

from knet.layers.linear import wdot, bias, wb
from knet.layers.mlp import wf, drop_wf, mlp2

__all__ = [
    'wdot',
    'bias',
    'wb',
    'wf',
    'drop_wf',
    'mlp2',
]
