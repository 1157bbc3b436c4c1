# knet layer compiler
# Layer definitions, expansion to primitive instructions, and net assembly

from knet.errors import (
    KnetError, MalformedExpression, UnresolvedCallee, MalformedCall,
    LayerDefinitionError, DuplicateOrMissingOutput,
)
from knet.registry import LayerRegistry, registry
from knet.symbols import SymbolGenerator
from knet.layer import layer
from knet.compiler import Compiler
from knet.net import Net, assemble

__all__ = [
    'KnetError', 'MalformedExpression', 'UnresolvedCallee', 'MalformedCall',
    'LayerDefinitionError', 'DuplicateOrMissingOutput',
    'LayerRegistry', 'registry', 'SymbolGenerator',
    'layer', 'Compiler', 'Net', 'assemble',
]

# Registers the standard layers (wdot, bias, wb, ...) in the default registry
from knet import layers  # noqa: E402,F401
