#!/usr/bin/env python3
"""Command-line interface for the Z80 flow analysing disassembler."""

from __future__ import annotations

import argparse
import logging
import time
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from z80flow import Disassembler, ProjectConfig, parse_address
from z80flow.config import HEX_FORMATS
from z80flow.naming import sanitize_label
from z80flow.project import MemoryImage


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "binary",
        nargs="?",
        type=Path,
        help="Raw memory image; optional when --project lists the images",
    )
    parser.add_argument(
        "--origin",
        default="0",
        help="Load address of the binary (e.g. 0x8000, $8000 or 8000h)",
    )
    parser.add_argument(
        "--entry",
        action="append",
        dest="entries",
        default=[],
        help="Entry address to start the analysis from; may be repeated."
        " Defaults to the origin.",
    )
    parser.add_argument(
        "--label",
        action="append",
        dest="labels",
        default=[],
        metavar="ADDR=NAME",
        help="Known label for an address",
    )
    parser.add_argument(
        "--skip",
        action="append",
        dest="skips",
        default=[],
        metavar="ADDR=COUNT",
        help="Inline parameter bytes following a call returning to ADDR",
    )
    parser.add_argument(
        "--project",
        type=Path,
        default=None,
        help="JSON project file with images, entry points, labels and skips",
    )
    parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Override the default <binary>.asm.txt output path",
    )
    parser.add_argument(
        "--graph-out",
        type=Path,
        default=None,
        help="Write the flow graph as JSON to this path",
    )
    parser.add_argument("--lower-case", action="store_true", help="Emit lower case mnemonics")
    parser.add_argument(
        "--hex-format",
        choices=HEX_FORMATS,
        default=None,
        help="Number style used in the listing",
    )
    parser.add_argument("--zx-next", action="store_true", help="Decode ZX Spectrum Next extensions")
    parser.add_argument("--verbose", action="store_true", help="Log analysis progress")
    return parser.parse_args(argv)


def parse_pairs(values: Sequence[str], option: str) -> List[Tuple[int, str]]:
    pairs: List[Tuple[int, str]] = []
    for value in values:
        address, sep, rest = value.partition("=")
        if not sep or not rest:
            raise SystemExit(f"{option} expects ADDR=VALUE, got {value!r}")
        try:
            pairs.append((parse_address(address), rest))
        except ValueError:
            raise SystemExit(f"invalid address in {option} {value!r}") from None
    return pairs


def load_project(args: argparse.Namespace) -> ProjectConfig:
    if args.project is not None:
        try:
            project = ProjectConfig.load(args.project)
        except ValueError as exc:
            raise SystemExit(str(exc)) from None
    else:
        project = ProjectConfig()

    settings = project.settings
    if args.hex_format is not None:
        settings = replace(settings, hex_format=args.hex_format)
    if args.lower_case:
        settings = replace(settings, lower_case=True)
    if args.zx_next:
        settings = replace(settings, zx_next=True)
    project.settings = settings

    try:
        origin = parse_address(args.origin)
        entries = [parse_address(value) for value in args.entries]
    except ValueError as exc:
        raise SystemExit(f"invalid address: {exc}") from None

    if args.binary is not None:
        if not args.binary.exists():
            raise SystemExit(f"missing input file: {args.binary}")
        project.images.append(MemoryImage(origin, args.binary))
        if not entries and not project.entry_points:
            entries = [origin]
    elif not project.images:
        raise SystemExit("expected a binary or a --project listing images")

    project.entry_points.extend(entries)
    for address, name in parse_pairs(args.labels, "--label"):
        project.labels[address] = sanitize_label(name)
    for address, count in parse_pairs(args.skips, "--skip"):
        try:
            project.skips[address] = parse_address(count)
        except ValueError:
            raise SystemExit(f"invalid skip count {count!r}") from None
    return project


def resolve_output_path(args: argparse.Namespace) -> Path:
    if args.out is not None:
        return args.out
    if args.binary is not None:
        return args.binary.with_name(args.binary.name + ".asm.txt")
    return args.project.with_suffix(".asm.txt")


def main(argv: Sequence[str] | None = None) -> None:
    start_time = time.perf_counter()
    args = parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    project = load_project(args)
    try:
        disassembler = Disassembler.from_project(project)
    except ValueError as exc:
        raise SystemExit(str(exc)) from None

    labels: Dict[int, str] = dict(project.labels)
    graph = disassembler.get_flow_graph(project.entry_points, labels)

    output_path = resolve_output_path(args)
    disassembler.write_listing(output_path)
    print(f"listing written to {output_path}")

    if args.graph_out is not None:
        args.graph_out.write_text(graph.to_json(), "utf-8")
        print(f"graph written to {args.graph_out}")

    print(f"nodes: {len(graph.nodes)} diagnostics: {graph.diagnostics.summary().describe()}")
    for entry in graph.diagnostics:
        print(f"  {entry.describe()}")
    total_time = time.perf_counter() - start_time
    print(f"total execution time: {total_time:.2f}s")


if __name__ == "__main__":
    main()
