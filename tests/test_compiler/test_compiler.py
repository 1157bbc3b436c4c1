"""
Unit tests for the layer compiler.

Tests:
1. Terminal case: a primitive call compiles to one instruction tuple
2. Order: a block of primitive assignments keeps its statement order
3. Inlining: composite layers flatten depth-first with fresh locals
4. Errors: malformed nodes and unknown callees abort compilation
"""

import sys
from pathlib import Path
# Ensure project root is in path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

import pytest

from knet.compiler import Compiler, is_instruction
from knet.errors import MalformedExpression, UnresolvedCallee, MalformedCall, KnetError
from knet.expr import Block, Assignment, Call, Parameters, Symbol, Const, LineMarker
from knet.initializers import Gaussian, Constant
from knet.layer import layer
from knet.ops import Par, Dot, Add, Relu, Sigm, Tanh, Soft, Drop
from knet.registry import LayerRegistry, registry as default_registry
from knet.symbols import SymbolGenerator, is_fresh
import knet.layers  # noqa: F401


def canonical(prog):
    """Rename fresh symbols by order of first appearance."""
    names = {}

    def rename(s):
        if not is_fresh(s):
            return s
        if s not in names:
            names[s] = f"#{len(names)}"
        return names[s]

    return [(instr[0],) + tuple(rename(s) for s in instr[1:]) for instr in prog]


def assign(target, callee, *args):
    return Assignment(Symbol(target), Call(callee, args))


@pytest.fixture
def reg():
    return LayerRegistry.standard()


@pytest.fixture
def compiler(reg):
    return Compiler(reg, SymbolGenerator())


class TestPrimitiveCalls:
    """Calls that resolve directly to operator constructors."""

    def test_single_primitive(self, compiler):
        prog = compiler.compile(assign("y", "dot", Symbol("w"), Symbol("x")))
        assert prog == [(Dot(), "w", "x", "y")]

    def test_block_order_preserved(self, compiler):
        block = Block((
            assign("h", "relu", Symbol("x")),
            LineMarker(2),
            assign("g", "sigm", Symbol("h")),
            assign("y", "add", Symbol("g"), Symbol("h")),
        ))
        prog = compiler.compile(block)
        assert len(prog) == 3
        assert [type(instr[0]) for instr in prog] == [Relu, Sigm, Add]
        assert [instr[-1] for instr in prog] == ["h", "g", "y"]

    def test_line_marker_compiles_to_nothing(self, compiler):
        assert compiler.compile(LineMarker(7)) == []
        assert compiler.compile(Block(())) == []

    def test_parameters_forwarded(self, compiler):
        params = Parameters((("init", Const(Constant(1))),))
        prog = compiler.compile(assign("w", "par", params, Const(3), Const(4)))
        assert prog == [(Par((3, 4), Constant(1)), "w")]

    def test_instruction_tuple_passes_through(self, compiler):
        instr = (Relu(), "x", "y")
        assert compiler.compile(instr) == [instr]
        assert is_instruction(instr)

    def test_compile_call(self, compiler):
        prog = compiler.compile_call("drop", ["x"], "y", pdrop=0.25)
        assert prog == [(Drop(0.25), "x", "y")]


class TestCompositeCalls:
    """Recursive expansion of @layer definitions."""

    def test_wb_end_to_end(self):
        compiler = Compiler(default_registry, SymbolGenerator())
        prog = compiler.compile_call("wb", ["a"], "b", out=100)

        assert len(prog) == 4
        (p1, w), (d, w2, a, y), (p2, bp), (ad, bp2, y2, b) = prog
        assert p1 == Par((100, 0), Gaussian(0, 0.01))
        assert d == Dot()
        assert p2 == Par((0,), Constant(0), out=100)
        assert ad == Add()
        # fresh names are consistent between definition and use
        assert w == w2 and bp == bp2 and y == y2
        assert a == "a" and b == "b"
        assert len({w, y, bp}) == 3
        assert all(is_fresh(s) for s in (w, y, bp))

    def test_nested_composites_flatten_depth_first(self, reg):
        @layer(registry=reg)
        def inner(x):
            h = relu(x)
            y = sigm(h)

        @layer(registry=reg)
        def outer(x):
            a = inner(x)
            b = inner(a)

        prog = Compiler(reg, SymbolGenerator()).compile_call("outer", ["in"], "out")
        assert [type(i[0]) for i in prog] == [Relu, Sigm, Relu, Sigm]
        assert prog[0][1] == "in"
        assert prog[-1][-1] == "out"
        # each stage reads what the previous one wrote
        for prev, cur in zip(prog, prog[1:]):
            assert cur[1] == prev[-1]

    def test_inlining_twice_never_clashes(self, reg):
        @layer(registry=reg)
        def pair(x):
            h = relu(x)
            y = tanh(h)

        @layer(registry=reg)
        def twice(x):
            a = pair(x)
            b = pair(a)

        prog = Compiler(reg, SymbolGenerator()).compile_call("twice", ["x"], "y")
        outputs = [instr[-1] for instr in prog]
        assert len(outputs) == len(set(outputs))
        assert "h" not in outputs and "a" not in outputs

    def test_inlining_matches_standalone_expansion(self):
        namer = SymbolGenerator()
        compiler = Compiler(default_registry, namer)
        standalone = canonical(compiler.compile_call("wdot", ["x"], "y", out=5))

        @layer(registry=default_registry.copy())
        def wrapper(x):
            y = wdot(x, out=5)

        inlined = canonical(Compiler(wrapper.registry, namer).compile_call("wrapper", ["x"], "y"))
        assert inlined == standalone

    def test_determinism_up_to_renaming(self):
        compiler = Compiler(default_registry, SymbolGenerator())
        first = compiler.compile_call("mlp2", ["x"], "y", hidden=8, out=3)
        second = compiler.compile_call("mlp2", ["x"], "y", hidden=8, out=3)
        assert first != second  # fresh names differ
        assert canonical(first) == canonical(second)

    def test_same_seed_same_names(self):
        a = Compiler(default_registry, SymbolGenerator()).compile_call("wb", ["x"], "y", out=4)
        b = Compiler(default_registry, SymbolGenerator()).compile_call("wb", ["x"], "y", out=4)
        assert a == b

    def test_callee_parameter(self):
        compiler = Compiler(default_registry, SymbolGenerator())
        prog = compiler.compile_call("wf", ["x"], "y", f="tanh", out=10)
        assert len(prog) == 5
        assert prog[-1][0] == Tanh()
        assert prog[-1][-1] == "y"

    def test_mlp2_structure(self):
        prog = Compiler(default_registry, SymbolGenerator()).compile_call(
            "mlp2", ["x"], "y", hidden=32, out=10)
        assert len(prog) == 10
        assert prog[0][0] == Par((32, 0), Gaussian(0, 0.01))
        assert prog[5][0] == Par((10, 0), Gaussian(0, 0.01))
        assert prog[4][0] == Relu()
        assert prog[-1][0] == Soft()

    def test_deferred_parameter_expression(self, reg):
        @layer(registry=reg)
        def widen(x, n=3):
            w = par(n * 2, 0, init=Gaussian(0, n / 100))
            y = dot(w, x)

        prog = Compiler(reg, SymbolGenerator()).compile_call("widen", ["x"], "y", n=4)
        assert prog[0][0] == Par((8, 0), Gaussian(0, 0.04))

    def test_closure_values_visible(self, reg):
        units = 12

        @layer(registry=reg)
        def fixed(x):
            w = par(units, 0)
            y = dot(w, x)

        prog = Compiler(reg, SymbolGenerator()).compile_call("fixed", ["x"], "y")
        assert prog[0][0].dims == (12, 0)


class TestCompileErrors:
    """Every error aborts the compile call."""

    def test_unregistered_callee(self, compiler):
        with pytest.raises(UnresolvedCallee, match="'conv9'"):
            compiler.compile(assign("y", "conv9", Symbol("x")))

    def test_unregistered_callee_inside_layer(self, reg):
        @layer(registry=reg)
        def broken(x):
            h = relu(x)
            y = nosuch(h)

        with pytest.raises(UnresolvedCallee) as info:
            Compiler(reg, SymbolGenerator()).compile_call("broken", ["x"], "y")
        err = info.value
        assert err.callee == "nosuch"
        assert err.layer == "broken"
        assert err.lineno is not None
        assert "in layer 'broken'" in str(err)

    def test_generator_failure_is_unresolved(self, compiler):
        with pytest.raises(UnresolvedCallee) as info:
            compiler.compile(assign("y", "dot", Symbol("a")))
        assert isinstance(info.value.__cause__, TypeError)

    def test_unknown_keyword_is_unresolved(self):
        compiler = Compiler(default_registry, SymbolGenerator())
        with pytest.raises(UnresolvedCallee):
            compiler.compile_call("relu", ["x"], "y", alpha=0.1)

    def test_failed_argument_evaluation_is_unresolved(self, reg):
        @layer(registry=reg)
        def misspelled(x):
            w = par(3, 0, init=Gaussin(0, 1))  # noqa: F821
            y = dot(w, x)

        with pytest.raises(UnresolvedCallee, match="Gaussin") as info:
            Compiler(reg, SymbolGenerator()).compile_call("misspelled", ["x"], "y")
        err = info.value
        assert err.callee == "par"
        assert err.layer == "misspelled"
        assert isinstance(err.__cause__, NameError)

    def test_parameters_not_first(self, compiler):
        with pytest.raises(MalformedCall, match="parameters block"):
            compiler.compile(assign("y", "add", Symbol("a"), Parameters(()), Symbol("b")))

    def test_two_parameter_blocks(self, compiler):
        with pytest.raises(MalformedCall):
            compiler.compile(assign("y", "drop", Parameters(()), Parameters(()), Symbol("x")))

    def test_duplicate_keyword(self, compiler):
        params = Parameters((("pdrop", Const(0.1)), ("pdrop", Const(0.2))))
        with pytest.raises(MalformedCall, match="more than once"):
            compiler.compile(assign("y", "drop", params, Symbol("x")))

    def test_constant_where_symbol_required(self, compiler):
        with pytest.raises(MalformedCall, match="must be a symbol"):
            compiler.compile(assign("y", "dot", Symbol("a"), Const(3)))

    def test_bad_argument_node(self, compiler):
        with pytest.raises(MalformedCall):
            compiler.compile(assign("y", "relu", Call("relu", (Symbol("x"),))))

    def test_assignment_of_non_call(self, compiler):
        with pytest.raises(MalformedExpression):
            compiler.compile(Assignment(Symbol("y"), Symbol("x")))

    def test_unknown_node(self, compiler):
        with pytest.raises(MalformedExpression):
            compiler.compile(Symbol("x"))
        with pytest.raises(MalformedExpression):
            compiler.compile("y = relu(x)")

    def test_tuple_without_operator(self, compiler):
        with pytest.raises(MalformedExpression):
            compiler.compile(("relu", "x", "y"))

    def test_primitive_returning_garbage(self, reg):
        @reg.primitive
        def bogus(x, y):
            return [x, y]

        with pytest.raises(MalformedExpression):
            Compiler(reg, SymbolGenerator()).compile_call("bogus", ["x"], "y")

    def test_errors_share_base_class(self, compiler):
        with pytest.raises(KnetError):
            compiler.compile(assign("y", "missing", Symbol("x")))

    def test_compiler_reusable_after_error(self, reg):
        @layer(registry=reg)
        def bad(x):
            y = missing(x)

        compiler = Compiler(reg, SymbolGenerator())
        with pytest.raises(UnresolvedCallee):
            compiler.compile_call("bad", ["x"], "y")
        assert compiler.compile(assign("y", "relu", Symbol("x"))) == [(Relu(), "x", "y")]
