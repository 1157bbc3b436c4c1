#!/usr/bin/env python3
import argparse
import ast
import importlib.util
import os
import sys
import traceback

from knet.errors import KnetError
from knet.net import Net
from knet.registry import registry


def load_module_from_path(path: str):
    """Dynamically load a Python module from a file path."""
    module_name = os.path.basename(path).replace(".py", "")
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Could not load module from {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


def parse_param(text: str):
    """Parse NAME=VALUE; VALUE is a Python literal, or a bare string."""
    if "=" not in text:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got '{text}'")
    name, value = text.split("=", 1)
    try:
        value = ast.literal_eval(value)
    except (ValueError, SyntaxError):
        pass
    return name.strip(), value


def build_parser():
    parser = argparse.ArgumentParser(description="knet layer compiler")
    parser.add_argument("layer", help="Name of the layer to compile")
    parser.add_argument("-f", "--file", action="append", default=[],
                        help="Python file with @layer definitions (repeatable)")
    parser.add_argument("-i", "--input", action="append", dest="inputs",
                        help="Net input symbol (repeatable, default: x)")
    parser.add_argument("--output-symbol", default="y", help="Net output symbol")
    parser.add_argument("-p", "--param", action="append", type=parse_param, default=[],
                        help="Layer keyword parameter NAME=VALUE (repeatable)")
    parser.add_argument("-o", "--output", help="Write the listing here instead of stdout")
    parser.add_argument("--list", action="store_true", help="List registered layers and exit")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    import knet.layers  # noqa: F401  standard layers
    for path in args.file:
        try:
            load_module_from_path(path)
        except KnetError as e:
            print(f"Error in layer definition: {e}")
            return 1
        except Exception as e:
            print(f"Error loading {path}: {e}")
            return 1

    if args.list:
        for name in registry:
            print(f"{name:<16} {registry[name].kind}")
        return 0

    print(f"Compiling {args.layer}...")
    try:
        net = Net(args.layer, inputs=args.inputs, output=args.output_symbol,
                  params=dict(args.param))
    except KnetError as e:
        print(f"Error: {e}")
        return 1
    except Exception as e:
        print(f"Error during build of {args.layer}: {e}")
        traceback.print_exc()
        return 1

    lines = net.listing()
    print(f"Generated {len(net.instructions)} instructions, {net.registers} registers.")

    if args.output:
        output_dir = os.path.dirname(os.path.abspath(args.output))
        os.makedirs(output_dir, exist_ok=True)
        with open(args.output, "w") as f:
            for line in lines:
                f.write(line + "\n")
        print(f"Listing saved to {args.output}")
    else:
        for line in lines:
            print(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())
