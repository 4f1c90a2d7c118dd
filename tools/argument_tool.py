#!/usr/bin/env python3
"""
argument_tool.py - Encode/decode argument trees from the command line

Usage:
  # Encode a YAML/JSON description to binary
  python argument_tool.py encode args.yaml -o args.bin
  python argument_tool.py encode args.yaml --base64

  # Decode binary back to YAML (or JSON)
  python argument_tool.py decode args.bin
  python argument_tool.py decode args.bin --json -o args.json
  python argument_tool.py decode "BAAEAGFyZ..." --base64   # inline string

  # Summary of an encoded tree
  python argument_tool.py info args.bin
"""

import argparse
import json
import logging
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from argument_proto import (
    Argument, ArgumentType, Array, Struct, argument_to_base64, base64_to_bytes,
    decode_argument, encode_argument,
)
from argument_yaml import TYPE_NAMES, argument_to_dict, dict_to_argument


logger = logging.getLogger(__name__)


def load_description(input_path: Path) -> Argument:
    """Load an argument tree from a YAML or JSON description file."""
    content = input_path.read_text()
    if input_path.suffix == '.json':
        data = json.loads(content)
    else:
        data = yaml.safe_load(content)
    return dict_to_argument(data)


def read_encoded(source: str, is_base64: bool = False) -> bytes:
    """Read encoded bytes from a file, or inline base64 text."""
    path = Path(source)
    if is_base64:
        text = path.read_text() if path.exists() else source
        return base64_to_bytes(text)
    return path.read_bytes()


def tree_stats(argument: Argument) -> Dict[str, Any]:
    """Node counts per type and maximum nesting depth."""
    counts = Counter()

    def walk(node: Argument, depth: int) -> int:
        counts[TYPE_NAMES[node.type]] += 1
        deepest = depth
        children: List[Argument] = []
        if isinstance(node, Struct):
            children = list(node)
        elif isinstance(node, Array) and node.element_type == ArgumentType.STRUCT:
            children = list(node)
        for child in children:
            deepest = max(deepest, walk(child, depth + 1))
        return deepest

    depth = walk(argument, 1)
    return {
        'name': argument.name,
        'type': TYPE_NAMES[argument.type],
        'nodes': sum(counts.values()),
        'depth': depth,
        'counts': dict(counts),
    }


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description='Encode/decode self-describing argument trees'
    )
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # Encode command
    enc = subparsers.add_parser('encode', help='Encode a description to binary')
    enc.add_argument('input', type=Path, help='Input description (YAML/JSON)')
    enc.add_argument('-o', '--output', type=Path, help='Output file (default: stdout)')
    enc.add_argument('-b', '--base64', action='store_true', help='Emit base64 text')
    enc.add_argument('-q', '--quiet', action='store_true', help='No stats on stderr')

    # Decode command
    dec = subparsers.add_parser('decode', help='Decode binary to a description')
    dec.add_argument('input', help='Input file, or base64 string with --base64')
    dec.add_argument('-o', '--output', type=Path, help='Output file (default: stdout)')
    dec.add_argument('-b', '--base64', action='store_true', help='Input is base64 text')
    dec.add_argument('-j', '--json', action='store_true', help='Output as JSON')

    # Info command
    inf = subparsers.add_parser('info', help='Show info about an encoded tree')
    inf.add_argument('input', help='Input file, or base64 string with --base64')
    inf.add_argument('-b', '--base64', action='store_true', help='Input is base64 text')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    try:
        if args.command == 'encode':
            if not args.input.exists():
                print(f"Error: {args.input} not found", file=sys.stderr)
                return 1

            argument = load_description(args.input)
            binary = encode_argument(argument)

            if args.base64:
                encoded = argument_to_base64(argument)
                if args.output:
                    args.output.write_text(encoded)
                else:
                    print(encoded)
            elif args.output:
                args.output.write_bytes(binary)
            else:
                sys.stdout.buffer.write(binary)
                sys.stdout.flush()

            if not args.quiet:
                print(f"# Argument: {argument.name or '(unnamed)'}", file=sys.stderr)
                print(f"# Binary: {len(binary)} bytes", file=sys.stderr)

        elif args.command == 'decode':
            argument = decode_argument(read_encoded(args.input, args.base64))
            description = argument_to_dict(argument)
            if args.json:
                content = json.dumps(description, indent=2)
            else:
                content = yaml.safe_dump(description, sort_keys=False,
                                         default_flow_style=False,
                                         allow_unicode=True)

            if args.output:
                args.output.write_text(content)
                print(f"Decoded to {args.output}", file=sys.stderr)
            else:
                print(content)

        elif args.command == 'info':
            binary = read_encoded(args.input, args.base64)
            stats = tree_stats(decode_argument(binary))
            print(f"Name: {stats['name'] or '(unnamed)'}")
            print(f"Type: {stats['type']}")
            print(f"Size: {len(binary)} bytes")
            print(f"Nodes: {stats['nodes']}")
            print(f"Depth: {stats['depth']}")
            counts = ', '.join(f"{k}: {v}" for k, v in sorted(stats['counts'].items()))
            print(f"Types: {counts}")

    except (ValueError, OSError, yaml.YAMLError) as e:
        logger.debug("Command '%s' failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
