"""IPL entry point."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from interpreter import Interpreter, IPLRuntimeError, TracebackFormatter
from lexer import ErrorCode, IPLError

PROGRAM_NAME = "ipli"


class UsageError(Exception):
    """Raised instead of exiting when the command line cannot be parsed."""


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise UsageError(message)


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog=PROGRAM_NAME,
        description="IPL reference interpreter",
        usage="%(prog)s [options] <file> [<args>]",
    )
    parser.add_argument("program", nargs="?", help="Source file path or literal source with --source")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments forwarded to the program")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit a step trace with env snapshots on runtime errors")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit a JSON trace on runtime errors")
    return parser


def run_cli(argv: Optional[List[str]] = None) -> int:
    try:
        args = _build_arg_parser().parse_args(argv)
    except UsageError as exc:
        print(f"{PROGRAM_NAME}: {exc}", file=sys.stderr)
        args = None

    if args is None or args.program is None:
        print(f"Usage: {PROGRAM_NAME} <file> [<args>]", file=sys.stderr)
        return ErrorCode.EBAD_ARGS

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except (OSError, UnicodeDecodeError):
            print("Error: unable to open input file", file=sys.stderr)
            return ErrorCode.EOPEN_FILE

    interpreter = Interpreter(
        source=source_text,
        filename=filename,
        argv=[PROGRAM_NAME, args.program, *args.args],
        verbose=args.verbose,
    )
    try:
        interpreter.run()
    except IPLError as error:
        sys.stdout.flush()
        print(error, file=sys.stderr)
        if isinstance(error, IPLRuntimeError):
            formatter = TracebackFormatter(interpreter)
            if args.verbose:
                print(formatter.format_text(error, verbose=True), file=sys.stderr)
            if args.traceback_json:
                print(formatter.to_json(error), file=sys.stderr)
        return error.code
    return 0


def main() -> None:
    raise SystemExit(int(run_cli()))


if __name__ == "__main__":
    main()
