from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Union

from lexer import ErrorCode, IPLSyntaxError, Token


ARITHMETIC_OPERATORS = {"PLUS", "MINUS", "STAR", "SLASH", "MODULO"}
COMPARISON_OPERATORS = {"EQUAL_EQUAL", "BANG_EQUAL", "LESS", "LESS_EQUAL", "GREATER", "GREATER_EQUAL"}


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    statement: str


@dataclass(frozen=True)
class Node:
    location: SourceLocation


class Statement(Node):
    pass


@dataclass(frozen=True)
class Block(Node):
    statements: List[Statement]


@dataclass(frozen=True)
class Program(Node):
    statements: List[Statement]


class Expression(Node):
    pass


@dataclass(frozen=True)
class Literal(Expression):
    value: int


@dataclass(frozen=True)
class Variable(Expression):
    name: str


@dataclass(frozen=True)
class ArrayRef(Expression):
    name: str
    index: Expression


@dataclass(frozen=True)
class Binary(Expression):
    operator: str
    left: Expression
    right: Expression


LValue = Union[Variable, ArrayRef]


@dataclass(frozen=True)
class ReadStatement(Statement):
    target: LValue


@dataclass(frozen=True)
class Assignment(Statement):
    target: LValue
    expression: Expression


@dataclass(frozen=True)
class WriteStatement(Statement):
    expression: Optional[Expression]


@dataclass(frozen=True)
class WritelnStatement(Statement):
    expression: Optional[Expression]


@dataclass(frozen=True)
class WhileStatement(Statement):
    condition: Binary
    block: Block


@dataclass(frozen=True)
class IfStatement(Statement):
    condition: Binary
    then_block: Block
    else_block: Optional[Block]


@dataclass(frozen=True)
class RandomStatement(Statement):
    target: LValue


@dataclass(frozen=True)
class ArgumentStatement(Statement):
    index: Expression
    target: LValue


@dataclass(frozen=True)
class ArgumentSizeStatement(Statement):
    target: LValue


@dataclass(frozen=True)
class BreakStatement(Statement):
    depth: int


@dataclass(frozen=True)
class ContinueStatement(Statement):
    depth: int


@dataclass(frozen=True)
class NewStatement(Statement):
    name: str
    size: Expression


@dataclass(frozen=True)
class FreeStatement(Statement):
    name: str


@dataclass(frozen=True)
class SizeStatement(Statement):
    name: str
    target: LValue


class Parser:
    """Recursive descent over the token list; indentation delimits blocks.

    The expected indentation of the block being parsed is passed down
    explicitly. A statement indented less than expected ends the block and
    is left unconsumed for the enclosing block to pick up.
    """

    def __init__(self, tokens: List[Token], filename: str, source_lines: List[str]):
        self.tokens = tokens
        self.filename = filename
        self.source_lines = source_lines
        self.index = 0

    def parse(self) -> Program:
        try:
            statements: List[Statement] = self._parse_statements(indent=0)
        except RecursionError:
            # Each block level costs several Python frames; report the limit
            # at the statement being parsed instead of a raw traceback.
            raise IPLSyntaxError(
                "blocks nested too deeply", self._peek().line, ErrorCode.EINTERNAL
            ) from None
        return Program(location=self._location_from_token(self._peek()), statements=statements)

    def _parse_statements(self, indent: int) -> List[Statement]:
        statements: List[Statement] = []
        while self._peek().type != "END":
            rewind = self.index
            depth = self._count_indentation()
            if depth != indent:
                if depth > indent:
                    raise IPLSyntaxError("invalid indentation", self._previous().line, ErrorCode.EBAD_INDENT)
                self.index = rewind
                break
            statement = self._parse_statement(indent)
            if statement is not None:
                statements.append(statement)
        return statements

    def _parse_statement(self, indent: int) -> Optional[Statement]:
        token = self._advance()
        token_type = token.type
        if token_type == "IDENTIFIER":
            self.index -= 1
            return self._parse_assignment(token)
        if token_type == "READ":
            return self._parse_read(token)
        if token_type == "WRITE":
            return WriteStatement(location=self._location_from_token(token), expression=self._parse_optional_expression())
        if token_type == "WRITELN":
            return WritelnStatement(location=self._location_from_token(token), expression=self._parse_optional_expression())
        if token_type == "WHILE":
            return self._parse_while(token, indent)
        if token_type == "IF":
            return self._parse_if(token, indent)
        if token_type == "RANDOM":
            return self._parse_random(token)
        if token_type == "ARGUMENT":
            if self._match("SIZE"):
                return self._parse_argument_size(token)
            return self._parse_argument(token)
        if token_type == "BREAK":
            return BreakStatement(location=self._location_from_token(token), depth=self._parse_loop_count("break"))
        if token_type == "CONTINUE":
            return ContinueStatement(location=self._location_from_token(token), depth=self._parse_loop_count("continue"))
        if token_type == "NEW":
            return self._parse_new(token)
        if token_type == "FREE":
            return self._parse_free(token)
        if token_type == "SIZE":
            return self._parse_size(token)
        if token_type in ("NEWLINE", "END"):
            return None
        raise IPLSyntaxError("unrecognized token", token.line, ErrorCode.EBAD_TOK)

    def _parse_read(self, keyword: Token) -> ReadStatement:
        target = self._parse_lvalue()
        self._consume_end_of_statement()
        return ReadStatement(location=self._location_from_token(keyword), target=target)

    def _parse_assignment(self, first: Token) -> Assignment:
        target = self._parse_lvalue()
        self._consume("EQUALS")
        expression = self._parse_expression()
        if isinstance(expression, Binary) and expression.operator not in ARITHMETIC_OPERATORS:
            raise IPLSyntaxError("invalid operator in binary expression", first.line, ErrorCode.EBAD_OP)
        self._consume_end_of_statement()
        return Assignment(location=self._location_from_token(first), target=target, expression=expression)

    def _parse_optional_expression(self) -> Optional[Expression]:
        if self._peek().type in ("NEWLINE", "END"):
            self._consume_end_of_statement()
            return None
        expression = self._parse_expression()
        self._consume_end_of_statement()
        return expression

    def _parse_while(self, keyword: Token, indent: int) -> WhileStatement:
        condition = self._parse_condition(keyword, "while")
        self._consume("NEWLINE")
        block = self._parse_block(keyword, indent)
        return WhileStatement(location=self._location_from_token(keyword), condition=condition, block=block)

    def _parse_if(self, keyword: Token, indent: int) -> IfStatement:
        condition = self._parse_condition(keyword, "if-else")
        self._consume("NEWLINE")
        then_block = self._parse_block(keyword, indent)
        else_block: Optional[Block] = None

        rewind = self.index
        if self._count_indentation() == indent and self._peek().type == "ELSE":
            else_token = self._advance()
            self._consume("NEWLINE")
            else_block = self._parse_block(else_token, indent)
        else:
            self.index = rewind
        return IfStatement(
            location=self._location_from_token(keyword),
            condition=condition,
            then_block=then_block,
            else_block=else_block,
        )

    def _parse_condition(self, keyword: Token, construct: str) -> Binary:
        condition = self._parse_expression()
        if not isinstance(condition, Binary) or condition.operator not in COMPARISON_OPERATORS:
            raise IPLSyntaxError(f"invalid conditional in {construct} statement", keyword.line, ErrorCode.EBAD_COND)
        return condition

    def _parse_block(self, header: Token, indent: int) -> Block:
        statements = self._parse_statements(indent + 1)
        if not statements:
            raise IPLSyntaxError("empty body statement", header.line, ErrorCode.ENO_BODY)
        return Block(location=self._location_from_token(header), statements=statements)

    def _parse_random(self, keyword: Token) -> RandomStatement:
        target = self._parse_lvalue()
        self._consume_end_of_statement()
        return RandomStatement(location=self._location_from_token(keyword), target=target)

    def _parse_argument(self, keyword: Token) -> ArgumentStatement:
        index = self._parse_rvalue()
        target = self._parse_lvalue()
        self._consume_end_of_statement()
        return ArgumentStatement(location=self._location_from_token(keyword), index=index, target=target)

    def _parse_argument_size(self, keyword: Token) -> ArgumentSizeStatement:
        target = self._parse_lvalue()
        self._consume_end_of_statement()
        return ArgumentSizeStatement(location=self._location_from_token(keyword), target=target)

    def _parse_loop_count(self, keyword: str) -> int:
        count = 1
        if self._peek().type == "NUMBER":
            number = self._consume("NUMBER")
            count = number.literal
            if count <= 0:
                raise IPLSyntaxError(f"invalid loop count in {keyword} statement", number.line, ErrorCode.EBAD_LOOPS)
        self._consume_end_of_statement()
        return count

    def _parse_new(self, keyword: Token) -> NewStatement:
        name = self._consume("IDENTIFIER")
        self._consume("LBRACKET")
        size = self._parse_expression()
        if isinstance(size, Binary) and size.operator not in ARITHMETIC_OPERATORS:
            raise IPLSyntaxError("invalid operator in binary expression", keyword.line, ErrorCode.EBAD_OP)
        self._consume("RBRACKET")
        self._consume_end_of_statement()
        return NewStatement(location=self._location_from_token(keyword), name=name.value or "", size=size)

    def _parse_free(self, keyword: Token) -> FreeStatement:
        name = self._consume("IDENTIFIER")
        self._consume_end_of_statement()
        return FreeStatement(location=self._location_from_token(keyword), name=name.value or "")

    def _parse_size(self, keyword: Token) -> SizeStatement:
        name = self._consume("IDENTIFIER")
        target = self._parse_lvalue()
        self._consume_end_of_statement()
        return SizeStatement(location=self._location_from_token(keyword), name=name.value or "", target=target)

    def _parse_expression(self) -> Expression:
        left = self._parse_rvalue()
        operator = self._peek()
        if operator.type in ARITHMETIC_OPERATORS or operator.type in COMPARISON_OPERATORS:
            self._advance()
            right = self._parse_rvalue()
            return Binary(location=left.location, operator=operator.type, left=left, right=right)
        return left

    def _parse_rvalue(self) -> Expression:
        token = self._advance()
        if token.type == "IDENTIFIER":
            location = self._location_from_token(token)
            if self._match("LBRACKET"):
                index = self._parse_rvalue()
                self._consume("RBRACKET")
                return ArrayRef(location=location, name=token.value or "", index=index)
            return Variable(location=location, name=token.value or "")
        if token.type == "NUMBER":
            return Literal(location=self._location_from_token(token), value=token.literal)
        if token.type == "END":
            raise IPLSyntaxError("unexpected program termination", token.line, ErrorCode.EBAD_TERM)
        raise IPLSyntaxError("expected name or literal", token.line, ErrorCode.EBAD_EXPR)

    def _parse_lvalue(self) -> LValue:
        expression = self._parse_rvalue()
        if not isinstance(expression, (Variable, ArrayRef)):
            raise IPLSyntaxError("expected lvalue", self._previous().line, ErrorCode.EBAD_EXPR)
        return expression

    def _count_indentation(self) -> int:
        depth = 0
        while self._peek().type == "TAB":
            tab = self._advance()
            if tab.value != "\t":
                raise IPLSyntaxError("invalid indentation", tab.line, ErrorCode.EBAD_INDENT)
            depth += 1
        return depth

    def _consume_end_of_statement(self) -> None:
        # The last line of a file may end without a newline.
        if self._peek().type != "END":
            self._consume("NEWLINE")

    def _consume(self, token_type: str) -> Token:
        token = self._advance()
        if token.type == token_type:
            return token
        if token.type == "END":
            raise IPLSyntaxError("unexpected program termination", token.line, ErrorCode.EBAD_TERM)
        raise IPLSyntaxError("unexpected token", token.line, ErrorCode.EBAD_TOK)

    def _match(self, token_type: str) -> bool:
        if self._peek().type == token_type:
            self._advance()
            return True
        return False

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        if token.type != "END":
            self.index += 1
        return token

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _previous(self) -> Token:
        return self.tokens[max(self.index - 1, 0)]

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, statement=statement)
