from __future__ import annotations
import json
import operator
import re
import sys
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Union

import numpy as np
from numpy.typing import NDArray

from lexer import ErrorCode, IPLError, Lexer, wrap_int
from parser import (
    ArgumentSizeStatement,
    ArgumentStatement,
    ArrayRef,
    Assignment,
    Binary,
    BreakStatement,
    ContinueStatement,
    Expression,
    FreeStatement,
    IfStatement,
    LValue,
    Literal,
    NewStatement,
    Parser,
    Program,
    RandomStatement,
    ReadStatement,
    SizeStatement,
    SourceLocation,
    Statement,
    Variable,
    WhileStatement,
    WriteStatement,
    WritelnStatement,
)


# Inclusive upper bound of values produced by `random`.
RAND_MAX = (1 << 31) - 1

_INTEGER_WORD = re.compile(r"[+-]?\d+")
_ATOI_PREFIX = re.compile(r"\s*([+-]?\d+)")


@dataclass
class Scalar:
    value: int = 0


@dataclass
class Array:
    length: int
    elements: NDArray[np.int32] = field(repr=False)

    @classmethod
    def allocate(cls, length: int) -> "Array":
        return cls(length=length, elements=np.zeros(length, dtype=np.int32))

    def in_bounds(self, index: int) -> bool:
        return 0 <= index < self.length

    def load(self, index: int) -> int:
        return int(self.elements[index])

    def store(self, index: int, value: int) -> None:
        self.elements[index] = value


Entry = Union[Scalar, Array]


class IPLRuntimeError(IPLError):
    """Raised for runtime faults."""

    category = "Runtime"

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation],
        code: ErrorCode,
    ) -> None:
        super().__init__(message, location.line if location else 0, code)
        self.location = location
        self.step_index: Optional[int] = None


class BreakSignal(Exception):
    def __init__(self, count: int) -> None:
        super().__init__(count)
        self.count = count


class ContinueSignal(Exception):
    def __init__(self, count: int) -> None:
        super().__init__(count)
        self.count = count


@dataclass
class SymbolTable:
    """The single global scope. Blocks never introduce bindings of their own."""

    values: Dict[str, Entry] = field(default_factory=dict)

    def get_optional(self, name: str) -> Optional[Entry]:
        return self.values.get(name)

    def load_scalar(self, name: str, location: SourceLocation) -> int:
        entry = self.values.get(name)
        if entry is None:
            # Reading an unseen variable installs it with value 0.
            entry = Scalar()
            self.values[name] = entry
        elif not isinstance(entry, Scalar):
            raise IPLRuntimeError("expected a variable name", location=location, code=ErrorCode.EBAD_VAR)
        return entry.value

    def store_scalar(self, name: str, value: int, location: SourceLocation) -> None:
        entry = self.values.get(name)
        if entry is None:
            self.values[name] = Scalar(value)
            return
        if not isinstance(entry, Scalar):
            raise IPLRuntimeError("expected a variable name", location=location, code=ErrorCode.EBAD_VAR)
        entry.value = value

    def get_array(self, name: str, location: SourceLocation) -> Array:
        entry = self.values.get(name)
        if not isinstance(entry, Array):
            raise IPLRuntimeError(
                "name does not correspond to an array",
                location=location,
                code=ErrorCode.EBAD_ARRAY,
            )
        return entry

    def bind_array(self, name: str, array: Array) -> None:
        self.values[name] = array

    def delete(self, name: str) -> None:
        del self.values[name]

    def snapshot(self) -> Dict[str, str]:
        def _render(entry: Entry) -> str:
            if isinstance(entry, Array):
                rendered = np.array2string(entry.elements, separator=",", threshold=16)
                return f"ARR[{entry.length}]:{rendered}"
            rendered = str(entry.value)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return f"INT:{rendered}"

        return {k: _render(v) for k, v in self.values.items()}


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    rule: str
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, str]]


class StateLogger:
    """Bounded record of executed steps, used to render error traces."""

    def __init__(self, verbose: bool, history: int = 256) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 0

    def record(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            rule=rule,
            source_location=location,
            statement=location.statement if location else None,
            env_snapshot=env_snapshot,
        )
        self.entries.append(entry)
        self.next_state_index += 1
        return entry

    def last_entry(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None


def _truncated_div(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return quotient if (a < 0) == (b < 0) else -quotient


def _truncated_mod(a: int, b: int) -> int:
    return a - b * _truncated_div(a, b)


_ARITHMETIC: Dict[str, Callable[[int, int], int]] = {
    "PLUS": operator.add,
    "MINUS": operator.sub,
    "STAR": operator.mul,
    "SLASH": _truncated_div,
    "MODULO": _truncated_mod,
}

_COMPARISON: Dict[str, Callable[[int, int], bool]] = {
    "EQUAL_EQUAL": operator.eq,
    "BANG_EQUAL": operator.ne,
    "LESS": operator.lt,
    "LESS_EQUAL": operator.le,
    "GREATER": operator.gt,
    "GREATER_EQUAL": operator.ge,
}


def _atoi(text: str) -> int:
    match = _ATOI_PREFIX.match(text)
    if match is None:
        return 0
    return wrap_int(int(match.group(1)))


class Interpreter:
    def __init__(
        self,
        *,
        source: str,
        filename: str,
        argv: Optional[List[str]] = None,
        verbose: bool = False,
        seed: Optional[int] = None,
        history: int = 256,
        input_provider: Optional[Callable[[], str]] = None,
        output_sink: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.source = source
        self._source_lines = source.splitlines()
        self.filename = filename
        # Program name, script path, then the forwarded arguments.
        self.argv: List[str] = list(argv) if argv is not None else ["ipli", filename]
        self.verbose = verbose
        self.input_provider = input_provider or sys.stdin.readline
        self.output_sink = output_sink or sys.stdout.write
        self.rng = np.random.default_rng(seed if seed is not None else int(time.time()))
        self.symbols = SymbolTable()
        self.loop_depth = 0
        self.logger = StateLogger(verbose=verbose, history=history)
        self._pending_input: Deque[str] = deque()

    def parse(self) -> Program:
        lexer = Lexer(self.source, self.filename)
        tokens = lexer.tokenize()
        parser = Parser(tokens, self.filename, self._source_lines)
        return parser.parse()

    def run(self) -> None:
        self.execute(self.parse())

    def execute(self, program: Program) -> None:
        try:
            self._execute_block(program.statements)
        except IPLRuntimeError as error:
            last = self.logger.last_entry()
            if last is not None:
                error.step_index = last.step_index
            raise
        except Exception as exc:
            # Surface Python-level faults (e.g. MemoryError from a huge `new`)
            # through the same reporting path as language errors.
            last = self.logger.last_entry()
            wrapped = IPLRuntimeError(
                f"internal interpreter error: {exc}",
                location=last.source_location if last else None,
                code=ErrorCode.EINTERNAL,
            )
            if last is not None:
                wrapped.step_index = last.step_index
            raise wrapped from exc

    def _execute_block(self, statements: List[Statement]) -> None:
        execute_stmt = self._execute_statement
        for statement in statements:
            execute_stmt(statement)

    def _execute_statement(self, statement: Statement) -> None:
        self._log_step(rule=statement.__class__.__name__, location=statement.location)
        location = statement.location
        if isinstance(statement, Assignment):
            value = self._evaluate_expression(statement.expression)
            self._assign(statement.target, value, location)
            return
        if isinstance(statement, WriteStatement):
            self._write(statement.expression, " ")
            return
        if isinstance(statement, WritelnStatement):
            self._write(statement.expression, "\n")
            return
        if isinstance(statement, WhileStatement):
            self._execute_while(statement)
            return
        if isinstance(statement, IfStatement):
            self._execute_if(statement)
            return
        if isinstance(statement, ReadStatement):
            self._assign(statement.target, self._read_integer(location), location)
            return
        if isinstance(statement, RandomStatement):
            value = int(self.rng.integers(0, RAND_MAX, endpoint=True))
            self._assign(statement.target, value, location)
            return
        if isinstance(statement, ArgumentStatement):
            position = self._evaluate_expression(statement.index)
            if position < 1 or position > len(self.argv) - 2:
                raise IPLRuntimeError("invalid argument index", location=location, code=ErrorCode.EBAD_IDX)
            self._assign(statement.target, _atoi(self.argv[position + 1]), location)
            return
        if isinstance(statement, ArgumentSizeStatement):
            self._assign(statement.target, len(self.argv), location)
            return
        if isinstance(statement, BreakStatement):
            if statement.depth > self.loop_depth:
                raise IPLRuntimeError("invalid break statement", location=location, code=ErrorCode.EBAD_BREAK)
            raise BreakSignal(statement.depth)
        if isinstance(statement, ContinueStatement):
            if statement.depth > self.loop_depth:
                raise IPLRuntimeError("invalid continue statement", location=location, code=ErrorCode.EBAD_CONT)
            raise ContinueSignal(statement.depth)
        if isinstance(statement, NewStatement):
            self._execute_new(statement)
            return
        if isinstance(statement, FreeStatement):
            self.symbols.get_array(statement.name, location)
            self.symbols.delete(statement.name)
            return
        if isinstance(statement, SizeStatement):
            array = self.symbols.get_array(statement.name, location)
            self._assign(statement.target, array.length, location)
            return
        raise IPLRuntimeError("unsupported statement", location=location, code=ErrorCode.EBAD_TOK)

    def _execute_while(self, statement: WhileStatement) -> None:
        eval_expr = self._evaluate_expression
        self.loop_depth += 1
        try:
            while eval_expr(statement.condition) != 0:
                try:
                    self._execute_block(statement.block.statements)
                except BreakSignal as bs:
                    if bs.count > 1:
                        bs.count -= 1
                        raise
                    return
                except ContinueSignal as cs:
                    if cs.count > 1:
                        cs.count -= 1
                        raise
                    # Targets this loop: fall through to the condition check.
        finally:
            self.loop_depth -= 1

    def _execute_if(self, statement: IfStatement) -> None:
        if self._evaluate_expression(statement.condition) != 0:
            self._execute_block(statement.then_block.statements)
        elif statement.else_block is not None:
            self._execute_block(statement.else_block.statements)

    def _execute_new(self, statement: NewStatement) -> None:
        location = statement.location
        if isinstance(self.symbols.get_optional(statement.name), Scalar):
            raise IPLRuntimeError(
                "array name overlaps with variable name",
                location=location,
                code=ErrorCode.EBAD_ID,
            )
        size = self._evaluate_expression(statement.size)
        if size <= 0:
            raise IPLRuntimeError("array size must be greater than 0", location=location, code=ErrorCode.EBAD_SIZE)
        # Re-allocating an existing array drops its previous contents.
        self.symbols.bind_array(statement.name, Array.allocate(size))

    def _write(self, expression: Optional[Expression], separator: str) -> None:
        if expression is None:
            self.output_sink(separator)
            return
        self.output_sink(f"{self._evaluate_expression(expression)}{separator}")

    def _read_integer(self, location: SourceLocation) -> int:
        while not self._pending_input:
            try:
                text = self.input_provider()
            except EOFError:
                text = ""
            if not text:
                raise IPLRuntimeError("unexpected end of input", location=location, code=ErrorCode.EBAD_INPUT)
            self._pending_input.extend(text.split())
        word = self._pending_input.popleft()
        if _INTEGER_WORD.fullmatch(word) is None:
            raise IPLRuntimeError(f"invalid integer input '{word}'", location=location, code=ErrorCode.EBAD_INPUT)
        return wrap_int(int(word))

    def _assign(self, target: LValue, value: int, location: SourceLocation) -> None:
        if isinstance(target, Variable):
            self.symbols.store_scalar(target.name, value, location)
            return
        array = self.symbols.get_array(target.name, location)
        index = self._evaluate_expression(target.index)
        self._check_bounds(array, index, location)
        array.store(index, value)

    def _check_bounds(self, array: Array, index: int, location: SourceLocation) -> None:
        if not array.in_bounds(index):
            raise IPLRuntimeError("array index out of bounds", location=location, code=ErrorCode.EIDX_OOB)

    def _evaluate_expression(self, expression: Expression) -> int:
        if isinstance(expression, Literal):
            return expression.value
        if isinstance(expression, Variable):
            return self.symbols.load_scalar(expression.name, expression.location)
        if isinstance(expression, ArrayRef):
            array = self.symbols.get_array(expression.name, expression.location)
            index = self._evaluate_expression(expression.index)
            self._check_bounds(array, index, expression.location)
            return array.load(index)
        if isinstance(expression, Binary):
            left = self._evaluate_expression(expression.left)
            right = self._evaluate_expression(expression.right)
            return self._apply_operator(expression, left, right)
        raise IPLRuntimeError("unsupported expression", location=expression.location, code=ErrorCode.EBAD_EXPR)

    def _apply_operator(self, expression: Binary, left: int, right: int) -> int:
        op = expression.operator
        compare = _COMPARISON.get(op)
        if compare is not None:
            return 1 if compare(left, right) else 0
        if op in ("SLASH", "MODULO") and right == 0:
            raise IPLRuntimeError("division with 0", location=expression.location, code=ErrorCode.EDIV_ZERO)
        return wrap_int(_ARITHMETIC[op](left, right))

    def _log_step(self, *, rule: str, location: Optional[SourceLocation]) -> None:
        env_snapshot = self.symbols.snapshot() if self.verbose else None
        self.logger.record(rule=rule, location=location, env_snapshot=env_snapshot)


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter, *, limit: int = 10) -> None:
        self.interpreter = interpreter
        self.limit = limit

    def recent_steps(self) -> List[StateEntry]:
        entries = list(self.interpreter.logger.entries)
        return entries[-self.limit:] if self.limit > 0 else entries

    def format_text(self, error: IPLError, verbose: bool) -> str:
        lines = [f"Trace (most recent step last, failing step {getattr(error, 'step_index', None)}):"]
        for entry in self.recent_steps():
            location = entry.source_location
            if location:
                lines.append(f"  File \"{location.file}\", line {location.line}, step {entry.step_index} ({entry.rule})")
                if entry.statement:
                    lines.append(f"    {entry.statement}")
            else:
                lines.append(f"  <unknown location>, step {entry.step_index} ({entry.rule})")
            if verbose and entry.env_snapshot is not None:
                snapshot = ", ".join(f"{k}={v}" for k, v in entry.env_snapshot.items())
                lines.append(f"    Env snapshot: {snapshot}")
        return "\n".join(lines)

    def to_json(self, error: IPLError) -> str:
        steps_json: List[Dict[str, Any]] = []
        for entry in self.recent_steps():
            step: Dict[str, Any] = {"step_index": entry.step_index, "state_id": entry.state_id, "rule": entry.rule}
            if entry.source_location:
                step["source_location"] = {
                    "file": entry.source_location.file,
                    "line": entry.source_location.line,
                    "statement": entry.source_location.statement,
                }
            if entry.env_snapshot is not None:
                step["env_snapshot"] = entry.env_snapshot
            steps_json.append(step)
        data = {
            "error": {
                "category": error.category,
                "message": error.message,
                "line": error.line,
                "code": int(error.code),
                "failing_step_index": getattr(error, "step_index", None),
            },
            "trace": steps_json,
        }
        return json.dumps(data, indent=2)
