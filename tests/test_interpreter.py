"""Interpreter tests: statement semantics, control flow, arrays, runtime errors."""

import json

import pytest

from interpreter import RAND_MAX, Interpreter, IPLRuntimeError, TracebackFormatter
from lexer import ErrorCode


def assert_runtime_error(result, code, line=None):
    assert isinstance(result.error, IPLRuntimeError), result.error
    assert result.error.code == code
    if line is not None:
        assert result.error.line == line


def test_assign_and_writeln(run_ipl):
    result = run_ipl("x = 3\nwriteln x\n")
    assert result.error is None
    assert result.output == "3\n"


def test_array_store_and_load(run_ipl):
    result = run_ipl("new a[3]\na[0] = 5\nwriteln a[0]\n")
    assert result.error is None
    assert result.output == "5\n"


def test_division_by_zero_writes_nothing(run_ipl):
    result = run_ipl("writeln 1/0\n")
    assert result.output == ""
    assert_runtime_error(result, ErrorCode.EDIV_ZERO, line=1)
    assert str(result.error) == "Runtime Error: division with 0 at line 1"


def test_modulo_by_zero(run_ipl):
    result = run_ipl("x = 0\ny = 5 % x\n")
    assert_runtime_error(result, ErrorCode.EDIV_ZERO, line=2)


def test_write_separators(run_ipl):
    result = run_ipl("write 1\nwrite 2\nwriteln\nwrite\nwriteln 3\n")
    assert result.output == "1 2 \n 3\n"


def test_comparisons_yield_one_or_zero(run_ipl):
    source = "writeln 1 < 2\nwriteln 2 < 1\nwriteln 3 == 3\nwriteln 3 != 3\nwriteln 4 >= 4\nwriteln 4 <= 3\n"
    assert run_ipl(source).output == "1\n0\n1\n0\n1\n0\n"


@pytest.mark.parametrize(
    "expression,expected",
    [
        ("7 / 2", 3),
        ("0 - 7", -7),
        ("a / 2", -3),
        ("a % 2", -1),
        ("7 % b", 1),
        ("a / b", 3),
        ("2147483647 + 1", -2147483648),
        ("65536 * 65536", 0),
    ],
)
def test_integer_arithmetic(run_ipl, expression, expected):
    result = run_ipl(f"a = 0 - 7\nb = 0 - 2\nx = {expression}\nwriteln x\n")
    assert result.error is None
    assert result.output == f"{expected}\n"


def test_unassigned_variable_reads_zero(run_ipl):
    result = run_ipl("writeln never_set\n")
    assert result.output == "0\n"
    assert "never_set" in result.interpreter.symbols.values


def test_while_loop(run_ipl):
    result = run_ipl("i = 0\nwhile i < 3\n\twrite i\n\ti = i + 1\nwriteln\n")
    assert result.output == "0 1 2 \n"


def test_if_else(run_ipl):
    source = "x = 5\nif x > 3\n\twriteln 1\nelse\n\twriteln 2\nif x > 9\n\twriteln 3\nelse\n\twriteln 4\n"
    assert run_ipl(source).output == "1\n4\n"


def test_break_leaves_innermost_loop(run_ipl):
    source = "i = 0\nwhile i < 10\n\tif i == 3\n\t\tbreak\n\ti = i + 1\nwriteln i\n"
    assert run_ipl(source).output == "3\n"


def test_break_two_leaves_both_loops(run_ipl):
    source = (
        "i = 0\n"
        "while i < 3\n"
        "\tj = 0\n"
        "\twhile j < 3\n"
        "\t\tbreak 2\n"
        "\t\tj = j + 1\n"
        "\ti = i + 1\n"
        "write i\n"
        "writeln j\n"
    )
    result = run_ipl(source)
    assert result.error is None
    assert result.output == "0 0\n"


def test_continue_two_resumes_outer_loop(run_ipl):
    source = (
        "i = 0\n"
        "while i < 3\n"
        "\ti = i + 1\n"
        "\tj = 0\n"
        "\twhile j < 3\n"
        "\t\tj = j + 1\n"
        "\t\tcontinue 2\n"
        "\t\twrite 99\n"
        "\twrite j\n"
        "writeln\n"
    )
    result = run_ipl(source)
    assert result.error is None
    assert result.output == "\n"


def test_continue_from_inside_if(run_ipl):
    source = (
        "i = 0\n"
        "while i < 6\n"
        "\ti = i + 1\n"
        "\tr = i % 2\n"
        "\tif r == 0\n"
        "\t\tcontinue\n"
        "\twrite i\n"
        "writeln\n"
    )
    result = run_ipl(source)
    assert result.error is None
    assert result.output == "1 3 5 \n"


def test_loop_depth_restored_after_break(run_ipl):
    result = run_ipl("while 1 < 2\n\tbreak\nbreak\n")
    assert_runtime_error(result, ErrorCode.EBAD_BREAK, line=3)
    assert result.interpreter.loop_depth == 0


def test_break_deeper_than_nesting(run_ipl):
    result = run_ipl("i = 0\nwhile i < 3\n\ti = i + 1\n\tbreak 2\n")
    assert_runtime_error(result, ErrorCode.EBAD_BREAK, line=4)


def test_continue_outside_loop(run_ipl):
    result = run_ipl("continue\n")
    assert_runtime_error(result, ErrorCode.EBAD_CONT, line=1)


def test_symbol_table_is_flat(run_ipl):
    source = "i = 0\nwhile i < 1\n\tinner = 42\n\ti = i + 1\nwriteln inner\n"
    assert run_ipl(source).output == "42\n"


def test_array_index_out_of_bounds(run_ipl):
    for statement, line in (("a[3] = 1", 2), ("x = a[5]", 2)):
        result = run_ipl(f"new a[3]\n{statement}\n")
        assert_runtime_error(result, ErrorCode.EIDX_OOB, line=line)


def test_negative_index_through_variable(run_ipl):
    result = run_ipl("new a[3]\ni = 0 - 1\nwriteln a[i]\n")
    assert_runtime_error(result, ErrorCode.EIDX_OOB, line=3)


def test_indexing_a_scalar(run_ipl):
    result = run_ipl("x = 1\nwriteln x[0]\n")
    assert_runtime_error(result, ErrorCode.EBAD_ARRAY, line=2)


def test_new_over_scalar(run_ipl):
    result = run_ipl("x = 1\nnew x[2]\n")
    assert_runtime_error(result, ErrorCode.EBAD_ID, line=2)


def test_array_used_as_scalar(run_ipl):
    for statement in ("writeln a", "a = 1"):
        result = run_ipl(f"new a[2]\n{statement}\n")
        assert_runtime_error(result, ErrorCode.EBAD_VAR, line=2)


@pytest.mark.parametrize("size", ["0", "0 - 4"])
def test_non_positive_array_size(run_ipl, size):
    result = run_ipl(f"new a[{size}]\n")
    assert_runtime_error(result, ErrorCode.EBAD_SIZE, line=1)


def test_new_elements_start_at_zero(run_ipl):
    assert run_ipl("new a[2]\nwrite a[0]\nwriteln a[1]\n").output == "0 0\n"


def test_new_again_reallocates(run_ipl):
    source = "new a[2]\na[1] = 9\nnew a[5]\nsize a n\nwrite n\nwriteln a[1]\n"
    assert run_ipl(source).output == "5 0\n"


def test_size_statement(run_ipl):
    assert run_ipl("n = 2\nnew a[n * 3]\nsize a s\nwriteln s\n").output == "6\n"


def test_size_of_scalar(run_ipl):
    result = run_ipl("x = 1\nsize x s\n")
    assert_runtime_error(result, ErrorCode.EBAD_ARRAY, line=2)


def test_free_removes_array(run_ipl):
    result = run_ipl("new a[2]\nfree a\nwriteln a[0]\n")
    assert_runtime_error(result, ErrorCode.EBAD_ARRAY, line=3)
    assert "a" not in result.interpreter.symbols.values


def test_freed_name_is_reusable(run_ipl):
    result = run_ipl("new a[2]\nfree a\na = 7\nwriteln a\n")
    assert result.error is None
    assert result.output == "7\n"


def test_free_of_unknown_name(run_ipl):
    result = run_ipl("free a\n")
    assert_runtime_error(result, ErrorCode.EBAD_ARRAY, line=1)


def test_array_elements_wrap(run_ipl):
    source = "new a[1]\na[0] = 2147483647\na[0] = a[0] + 1\nwriteln a[0]\n"
    assert run_ipl(source).output == "-2147483648\n"


def test_read_integers(run_ipl):
    source = "read x\nread y\nnew a[1]\nread a[0]\nwriteln x + y\nwriteln a[0]\n"
    result = run_ipl(source, stdin="3 4\n  -10\n")
    assert result.error is None
    assert result.output == "7\n-10\n"


def test_read_past_end_of_input(run_ipl):
    result = run_ipl("read x\nread y\n", stdin="1\n")
    assert_runtime_error(result, ErrorCode.EBAD_INPUT, line=2)
    assert result.error.message == "unexpected end of input"


def test_read_invalid_word(run_ipl):
    result = run_ipl("read x\n", stdin="abc\n")
    assert_runtime_error(result, ErrorCode.EBAD_INPUT, line=1)
    assert result.error.message == "invalid integer input 'abc'"


def test_argument_fetch(run_ipl):
    source = "argument 1 a\nargument 3 c\nwrite a\nwriteln c\n"
    assert run_ipl(source, args=("10", "20", "-30")).output == "10 -30\n"


def test_argument_converts_leading_digits(run_ipl):
    source = "argument 1 a\nargument 2 b\nwrite a\nwriteln b\n"
    assert run_ipl(source, args=("12abc", "xyz")).output == "12 0\n"


def test_argument_size_counts_program_and_script(run_ipl):
    result = run_ipl("argument size n\nwriteln n\n", args=("1", "2", "3"))
    assert result.output == "5\n"


@pytest.mark.parametrize("index", ["0", "4"])
def test_argument_index_out_of_range(run_ipl, index):
    result = run_ipl(f"argument {index} x\n", args=("1", "2", "3"))
    assert_runtime_error(result, ErrorCode.EBAD_IDX, line=1)


def test_random_is_seeded_and_in_range(run_ipl):
    source = "random x\nrandom y\nwrite x\nwriteln y\n"
    first = run_ipl(source, seed=7).output
    second = run_ipl(source, seed=7).output
    assert first == second
    values = [int(word) for word in first.split()]
    assert all(0 <= value <= RAND_MAX for value in values)


def test_syntax_error_stops_before_execution(run_ipl):
    result = run_ipl("writeln 1\nx = 1 < 2\n")
    assert result.output == ""
    assert result.error.code == ErrorCode.EBAD_OP


def test_two_space_indentation_is_rejected(run_ipl):
    result = run_ipl("i = 0\nwhile i < 3\n  i = i + 1\n")
    assert result.error.code == ErrorCode.EBAD_INDENT
    assert result.error.line == 3


def test_failing_step_is_recorded(run_ipl):
    result = run_ipl("x = 1\ny = 2\nz = x / 0\n")
    error = result.error
    assert error.step_index == 2
    entry = result.interpreter.logger.last_entry()
    assert entry.rule == "Assignment"
    assert entry.source_location.line == 3
    assert entry.env_snapshot is None


def test_history_is_bounded(run_ipl):
    result = run_ipl("i = 0\nwhile i < 1000\n\ti = i + 1\n")
    logger = result.interpreter.logger
    assert len(logger.entries) == 256
    assert logger.next_state_index == 1002


def test_traceback_text_and_json(run_ipl):
    result = run_ipl("x = 1\nwriteln x / 0\n")
    formatter = TracebackFormatter(result.interpreter, limit=5)
    text = formatter.format_text(result.error, verbose=False)
    assert text.splitlines()[0] == "Trace (most recent step last, failing step 1):"
    assert 'File "<test>", line 2, step 1 (WritelnStatement)' in text
    assert "    writeln x / 0" in text

    data = json.loads(formatter.to_json(result.error))
    assert data["error"] == {
        "category": "Runtime",
        "message": "division with 0",
        "line": 2,
        "code": int(ErrorCode.EDIV_ZERO),
        "failing_step_index": 1,
    }
    assert [step["rule"] for step in data["trace"]] == ["Assignment", "WritelnStatement"]


def test_verbose_records_environment():
    chunks = []
    interpreter = Interpreter(
        source="x = 4\nnew a[2]\nwriteln a[5]\n",
        filename="<test>",
        verbose=True,
        output_sink=chunks.append,
    )
    with pytest.raises(IPLRuntimeError) as info:
        interpreter.run()
    snapshot = interpreter.logger.last_entry().env_snapshot
    assert snapshot["x"] == "INT:4"
    assert snapshot["a"].startswith("ARR[2]:")
    text = TracebackFormatter(interpreter).format_text(info.value, verbose=True)
    assert "Env snapshot: x=INT:4" in text


def test_independent_runs_do_not_share_state(run_ipl):
    run_ipl("shared = 5\n")
    assert run_ipl("writeln shared\n").output == "0\n"
