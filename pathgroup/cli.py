#!/usr/bin/env python3
"""
CLI entrypoint for pathgroup.

Usage:
    pathgroup <program.s> --find success --avoid failure [options]
    pathgroup <program.s> --find-output "granted" --stdin-size 8 --printable
    pathgroup <program.s>                      # explore every path

Returns:
    0: FOUND (or every path explored when no target is given)
    1: NOT_FOUND (exploration finished without reaching a target)
    2: UNKNOWN (step budget exhausted with states still active)
    3: Error (file not found, assembly or configuration error)
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import PathGroupConfig
from .errors import PathGroupError
from .hooks import Nop, ReturnUnconstrained, ReturnValue
from .isa.program import INSTRUCTION_SIZE
from .project import Project
from .report import EXPLORED, FOUND, NOT_FOUND, ExplorationReport


EXIT_CODES = {FOUND: 0, EXPLORED: 0, NOT_FOUND: 1}


def _target(text: str):
    """Numeric address or label."""
    try:
        return int(text, 0)
    except ValueError:
        return text


def _output_predicate(texts: list[str]):
    needles = [t.encode("latin-1") for t in texts]

    def predicate(state):
        stdout = state.posix.dumps(1)
        return any(needle in stdout for needle in needles)
    return predicate


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pathgroup",
        description="pathgroup: symbolic path exploration for register-machine assembly programs",
    )
    parser.add_argument("program", type=Path, help="Assembly source file")
    parser.add_argument("--find", action="append", default=[], metavar="TARGET",
                        help="Address or label to reach (repeatable)")
    parser.add_argument("--avoid", action="append", default=[], metavar="TARGET",
                        help="Address or label to avoid (repeatable)")
    parser.add_argument("--find-output", action="append", default=[], metavar="TEXT",
                        help="Find states whose stdout contains TEXT (repeatable)")
    parser.add_argument("--avoid-output", action="append", default=[], metavar="TEXT",
                        help="Avoid states whose stdout contains TEXT (repeatable)")
    stdin = parser.add_mutually_exclusive_group()
    stdin.add_argument("--stdin", type=str, help="Concrete stdin contents")
    stdin.add_argument("--stdin-size", type=int, help="Number of symbolic stdin bytes")
    parser.add_argument("--printable", action="store_true",
                        help="Restrict symbolic stdin to printable ASCII")
    parser.add_argument("--num-find", type=int, help="Stop after this many found states")
    parser.add_argument("--max-steps", type=int, help="Maximum number of exploration rounds")
    parser.add_argument("--dfs", action="store_true", help="Depth-first exploration")
    parser.add_argument("--max-length", type=int, help="Cut paths longer than this many blocks")
    parser.add_argument("--skip", action="append", default=[], metavar="ADDR[:LEN]",
                        help="Skip LEN bytes of code at ADDR (default one instruction)")
    parser.add_argument("--stub", action="append", default=[], metavar="LABEL=VALUE",
                        help="Replace the function at LABEL by one returning VALUE ('?' for unconstrained)")
    parser.add_argument("--config", type=Path, help="Configuration file (default: ./.pathgroup.yml)")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--disassemble", action="store_true", help="Print the assembled program and exit")
    parser.add_argument("--verbose", action="store_true", help="Verbose output")
    return parser


def _apply_overrides(config: PathGroupConfig, args):
    if args.max_steps is not None:
        config.exploration.max_steps = args.max_steps
    if args.num_find is not None:
        config.exploration.num_find = args.num_find
    if args.dfs:
        config.exploration.strategy = "dfs"
    if args.max_length is not None:
        config.exploration.max_length = args.max_length
    if args.stdin_size is not None:
        config.input.stdin_size = args.stdin_size
    if args.printable:
        config.input.printable = True
    config.validate()


def _install_hooks(project: Project, args):
    for spec in args.skip:
        addr, _, length = spec.partition(":")
        project.hook(_target(addr), Nop(), length=int(length, 0) if length else INSTRUCTION_SIZE)
    for spec in args.stub:
        label, sep, value = spec.partition("=")
        if not sep:
            raise PathGroupError(f"--stub expects LABEL=VALUE, got '{spec}'")
        procedure = ReturnUnconstrained() if value.strip() == "?" else ReturnValue(int(value, 0))
        project.hook_symbol(label.strip(), procedure)


def run(args) -> int:
    if not args.program.exists():
        print(f"Error: File not found: {args.program}", file=sys.stderr)
        return 3

    config = PathGroupConfig.load(args.config)
    _apply_overrides(config, args)
    project = Project.from_file(args.program, config)

    if args.disassemble:
        print(project.program.disassemble())
        return 0

    if (args.find and args.find_output) or (args.avoid and args.avoid_output):
        print("Error: use either address targets or output targets, not both", file=sys.stderr)
        return 3

    _install_hooks(project, args)

    state = project.factory.entry_state(stdin=args.stdin)
    pg = project.path_group(state)

    find = _output_predicate(args.find_output) if args.find_output else [_target(t) for t in args.find]
    avoid = _output_predicate(args.avoid_output) if args.avoid_output else [_target(t) for t in args.avoid]
    searched = bool(args.find or args.find_output)

    if not args.json:
        print(f"Exploring: {args.program}")
        print()

    if searched or avoid:
        pg.explore(find=find or None, avoid=avoid or None)
    else:
        pg.run()

    report = ExplorationReport.from_path_group(pg, searched=searched)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(report.summary())
    if report.verdict == NOT_FOUND:
        print("Target not found: every path ended before reaching it", file=sys.stderr)
    return EXIT_CODES.get(report.verdict, 2)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return run(args)
    except PathGroupError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 3
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 3


if __name__ == "__main__":
    sys.exit(main())
