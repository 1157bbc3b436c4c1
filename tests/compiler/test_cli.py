import textwrap
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from contextlib import redirect_stdout
import io

from knet.cli import main, parse_param


def run(argv):
    out = io.StringIO()
    with redirect_stdout(out):
        code = main(argv)
    return code, out.getvalue()


class TestCli(unittest.TestCase):
    def test_parse_param(self):
        self.assertEqual(parse_param("out=100"), ("out", 100))
        self.assertEqual(parse_param("f=tanh"), ("f", "tanh"))
        self.assertEqual(parse_param("pdrop=0.25"), ("pdrop", 0.25))

    def test_compile_standard_layer(self):
        code, text = run(["wb", "-p", "out=100"])
        self.assertEqual(code, 0)
        self.assertIn("Generated 4 instructions, 5 registers.", text)
        self.assertIn("Dot()", text)

    def test_unknown_layer(self):
        code, text = run(["nope"])
        self.assertEqual(code, 1)
        self.assertIn("not a registered layer", text)

    def test_param_named_like_net_argument(self):
        code, text = run(["wb", "-p", "output=3", "-p", "out=5"])
        self.assertEqual(code, 0, text)
        self.assertIn("Generated 4 instructions, 5 registers.", text)

    def test_build_failure(self):
        code, text = run(["dot", "-i", "a", "-i", "a"])
        self.assertEqual(code, 1)
        self.assertIn("Error during build of dot", text)
        self.assertIn("more than once", text)

    def test_list(self):
        code, text = run(["wb", "--list"])
        self.assertEqual(code, 0)
        self.assertIn("mlp2", text)
        self.assertIn("primitive", text)

    def test_definition_file_and_output(self):
        with TemporaryDirectory() as tmp:
            src = Path(tmp) / "cli_layers.py"
            src.write_text(textwrap.dedent("""
                from knet import layer

                @layer
                def double_relu(x):
                    h = relu(x)
                    y = relu(h)
            """))
            out = Path(tmp) / "out" / "double_relu.txt"
            code, text = run(["double_relu", "-f", str(src), "-i", "a", "-o", str(out)])
            self.assertEqual(code, 0, text)
            lines = out.read_text().splitlines()
            self.assertEqual(len(lines), 3)
            self.assertIn("Relu()", lines[2])

    def test_bad_definition_file(self):
        with TemporaryDirectory() as tmp:
            src = Path(tmp) / "cli_bad_layers.py"
            src.write_text(textwrap.dedent("""
                from knet import layer

                @layer
                def hollow(x):
                    pass
            """))
            code, text = run(["hollow", "-f", str(src)])
            self.assertEqual(code, 1)
            self.assertIn("no assignments", text)
