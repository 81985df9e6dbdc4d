"""Pytest configuration for the IPL test suite."""

import io
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import pytest

# Make the flat top-level modules importable without installing.
sys.path.insert(0, str(Path(__file__).parent.parent))

from interpreter import Interpreter
from lexer import IPLError, Lexer, Token
from parser import Parser, Program


@dataclass
class RunResult:
    output: str
    error: Optional[IPLError]
    interpreter: Interpreter


def tokenize(source: str) -> List[Token]:
    return Lexer(source, "<test>").tokenize()


def parse(source: str) -> Program:
    return Parser(tokenize(source), "<test>", source.splitlines()).parse()


@pytest.fixture
def run_ipl():
    """Run IPL source and collect stdout text plus the first error raised."""

    def _run(source: str, *, args=(), stdin: str = "", seed: int = 1234) -> RunResult:
        chunks: List[str] = []
        interpreter = Interpreter(
            source=source,
            filename="<test>",
            argv=["ipli", "<test>", *args],
            seed=seed,
            input_provider=io.StringIO(stdin).readline,
            output_sink=chunks.append,
        )
        error: Optional[IPLError] = None
        try:
            interpreter.run()
        except IPLError as exc:
            error = exc
        return RunResult(output="".join(chunks), error=error, interpreter=interpreter)

    return _run
