"""
Net assembly: turns a compiled instruction list into register-indexed form.

A Net combines:
- Compilation of a top-level layer call (via Compiler)
- Register numbering (symbols -> dense ints in order of first appearance)
- One Input pseudo-op per declared net input

Example:
    from knet.net import Net
    import knet.layers

    net = Net("wb", params={"out": 100})
    net.op      # [Input(), Par(...), Dot(), Par(...), Add()]
    net.inputs  # [[], [], [1, 0], [], [3, 2]]
"""

from __future__ import annotations
import inspect
from typing import Any, Dict, List, Sequence, Tuple, Union

import numpy as np

from knet.compiler import Compiler, is_instruction
from knet.errors import MalformedExpression
from knet.ops import Input, Op, Par


def assemble(instructions: Sequence[tuple], inputs: Sequence[str]
             ) -> Tuple[List[Op], List[np.ndarray], Dict[str, int]]:
    """
    Replace symbols with register indices.

    Args:
        instructions: Compiled (Op, in..., out) tuples
        inputs: Declared net input symbols, in order

    Returns:
        (operations, operand_indices, symbols) where operations[i] writes
        register i, operand_indices[i] lists the registers it reads, and
        symbols maps each symbol to its register.

    Raises:
        ValueError: an input is declared twice
        MalformedExpression: an entry is not an instruction, or writes a
            symbol that already names a register
    """
    symbols: Dict[str, int] = {}

    def index(s):
        if s not in symbols:
            symbols[s] = len(symbols)
        return symbols[s]

    operations: List[Op] = []
    operand_indices: List[np.ndarray] = []

    for s in inputs:
        if s in symbols:
            raise ValueError(f"Net input '{s}' declared more than once")
        index(s)
        operations.append(Input())
        operand_indices.append(np.array([], dtype=np.int64))

    for instr in instructions:
        if not is_instruction(instr):
            raise MalformedExpression(f"not an instruction: {instr!r}")
        op, *operands, out = instr
        ids = [index(s) for s in operands]
        # operations[i] writes register i, so each result is a new register
        if out in symbols:
            raise MalformedExpression(f"register '{out}' is written more than once: {instr!r}")
        index(out)
        operations.append(op)
        operand_indices.append(np.array(ids, dtype=np.int64))

    return operations, operand_indices, symbols


class Net:
    """
    A compiled and assembled network program.

    Args:
        layer: Layer name or @layer function to compile
        inputs: Net input symbols (default: one per layer input, x, x2, ...)
        output: Net output symbol
        params: Keyword parameters for the layer
        registry: LayerRegistry (default: the layer's own, or knet.registry.registry)
        namer: SymbolGenerator for fresh locals
    """

    def __init__(self, layer: Union[str, Any], inputs: Sequence[str] = None,
                 output: str = "y", *, params: Dict[str, Any] = None,
                 registry=None, namer=None):
        if not isinstance(layer, str):
            registry = registry if registry is not None else getattr(layer, "registry", None)
            layer = layer.name
        self.compiler = Compiler(registry, namer)
        self.name = layer

        if inputs is None:
            inputs = _default_inputs(self.compiler.registry.lookup(layer))
        self.input_symbols = list(inputs)
        self.output_symbol = output
        self.params = dict(params or {})

        self.instructions = self.compiler.compile_call(layer, self.input_symbols, output,
                                                       **self.params)
        self.op, self.inputs, self.symbols = assemble(self.instructions, self.input_symbols)

    @property
    def output(self) -> int:
        """Register holding the net output."""
        return self.symbols[self.output_symbol]

    @property
    def registers(self) -> int:
        return len(self.symbols)

    def parameters(self) -> List[int]:
        """Registers written by Par ops."""
        return [i for i, op in enumerate(self.op) if isinstance(op, Par)]

    def listing(self) -> List[str]:
        """One line per register: index, symbol, op and operand registers."""
        names = {i: s for s, i in self.symbols.items()}
        lines = []
        for i, (op, args) in enumerate(zip(self.op, self.inputs)):
            operands = ", ".join(str(a) for a in args.tolist())
            lines.append(f"{i:4d}  {names.get(i, '?'):<16} {op!r}  [{operands}]")
        return lines

    def dump(self):
        """Print the register map and instruction listing."""
        print(f"\n==== NET {self.name} ====\n")
        for line in self.listing():
            print(line)
        print(f"\nInputs: {', '.join(self.input_symbols)}")
        print(f"Output: {self.output_symbol} (register {self.output})")
        print(f"Registers: {self.registers}\n")

    def __len__(self) -> int:
        return len(self.op)


def _default_inputs(generator) -> List[str]:
    definition = getattr(generator, "definition", None)
    constructor = getattr(generator, "constructor", None)
    if definition is not None:
        n = len(definition.inputs)
    elif constructor is not None:
        # required positionals of an operator constructor, less the output
        required = [p for p in inspect.signature(constructor).parameters.values()
                    if p.kind is p.POSITIONAL_OR_KEYWORD and p.default is p.empty]
        n = max(len(required) - 1, 0)
    else:
        n = 1
    if n == 0:
        return []
    return ["x"] + [f"x{i}" for i in range(2, n + 1)]
