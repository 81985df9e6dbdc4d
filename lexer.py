from __future__ import annotations
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, List, Optional


class ErrorCode(IntEnum):
    """Process exit codes. Values are stable; callers match on them."""

    EBAD_ARGS = 15
    EOPEN_FILE = 16
    # Lexical
    EBAD_SYMBOL = 17
    # Syntax
    EBAD_INDENT = 18
    EBAD_TOK = 19
    EBAD_OP = 20
    EBAD_EXPR = 21
    EBAD_COND = 22
    ENO_BODY = 23
    EBAD_IDX = 24
    EBAD_TERM = 25
    # Runtime
    EDIV_ZERO = 26
    EBAD_BREAK = 27
    EBAD_CONT = 28
    EBAD_LOOPS = 29
    EBAD_ID = 30
    EBAD_SIZE = 31
    EBAD_ARRAY = 32
    EBAD_VAR = 33
    EIDX_OOB = 34
    EBAD_INPUT = 35
    ELONG_LEXEME = 36
    EINTERNAL = 37


class IPLError(Exception):
    """Base class for interpreter errors."""

    category = "Internal"

    def __init__(self, message: str, line: int, code: ErrorCode) -> None:
        super().__init__(message)
        self.message = message
        self.line = line
        self.code = code

    def __str__(self) -> str:
        return f"{self.category} Error: {self.message} at line {self.line}"


class IPLLexicalError(IPLError):
    """Raised on characters the scanner does not recognize."""

    category = "Lexical"


class IPLSyntaxError(IPLError):
    """Raised when parsing fails."""

    category = "Syntax"


@dataclass(frozen=True)
class Token:
    type: str
    value: Optional[str]
    line: int
    literal: int = 0


KEYWORDS = {
    "read",
    "write",
    "writeln",
    "if",
    "else",
    "while",
    "random",
    "argument",
    "size",
    "break",
    "continue",
    "new",
    "free",
}

SYMBOLS = {
    "+": "PLUS",
    "-": "MINUS",
    "*": "STAR",
    "/": "SLASH",
    "%": "MODULO",
    "[": "LBRACKET",
    "]": "RBRACKET",
}

# Operators that may be followed by '=' to form a two-character token.
PAIRED_SYMBOLS = {
    "=": ("EQUALS", "EQUAL_EQUAL"),
    "<": ("LESS", "LESS_EQUAL"),
    ">": ("GREATER", "GREATER_EQUAL"),
}

INT_BITS = 32
INT_MIN = -(1 << (INT_BITS - 1))
INT_MAX = (1 << (INT_BITS - 1)) - 1


def wrap_int(value: int) -> int:
    """Reduce ``value`` to a signed 32-bit integer (two's complement)."""
    return ((value - INT_MIN) & ((1 << INT_BITS) - 1)) + INT_MIN


class Lexer:
    def __init__(self, text: str, filename: str, *, max_lexeme: int = 100) -> None:
        self.text = text
        self.filename = filename
        self.max_lexeme = max_lexeme
        self.index = 0
        self.line = 1
        # Leading whitespace of the current line, materialized as TAB tokens
        # once the line's first content token is produced.
        self._indentation: List[str] = []
        self._at_line_start = True
        self._line_blank = True

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        _advance = self._advance
        symbols = SYMBOLS
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch == " " or ch == "\t":
                if self._at_line_start:
                    self._indentation.append(ch)
                _advance()
                continue
            if ch == "\r":
                _advance()
                continue
            if ch == "\n":
                if not self._line_blank:
                    tokens_append(Token("NEWLINE", "\\n", self.line))
                _advance()
                self._indentation.clear()
                self._at_line_start = True
                self._line_blank = True
                continue
            if ch == "#":
                self._consume_comment()
                continue

            self._begin_content(tokens)
            if ch in symbols:
                tokens_append(Token(symbols[ch], ch, self.line))
                _advance()
                continue
            if ch in PAIRED_SYMBOLS:
                tokens_append(self._consume_paired(ch))
                continue
            if ch == "!":
                tokens_append(self._consume_bang())
                continue
            if ch.isascii() and ch.isdigit():
                tokens_append(self._consume_number())
                continue
            if _is_identifier_start(ch):
                tokens_append(self._consume_identifier())
                continue
            raise IPLLexicalError(f"unexpected character '{ch}'", self.line, ErrorCode.EBAD_SYMBOL)
        tokens_append(Token("END", "<EOF>", self.line))
        return tokens

    def _begin_content(self, tokens: List[Token]) -> None:
        if not self._at_line_start:
            return
        for ch in self._indentation:
            tokens.append(Token("TAB", ch, self.line))
        self._indentation.clear()
        self._at_line_start = False
        self._line_blank = False

    def _consume_comment(self) -> None:
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] != "\n":
            _advance()

    def _consume_paired(self, ch: str) -> Token:
        single, double = PAIRED_SYMBOLS[ch]
        self._advance()
        if not self._eof and self._peek() == "=":
            self._advance()
            return Token(double, ch + "=", self.line)
        return Token(single, ch, self.line)

    def _consume_bang(self) -> Token:
        self._advance()
        if self._eof:
            raise IPLLexicalError("unexpected character '!'", self.line, ErrorCode.EBAD_SYMBOL)
        following = self._peek()
        if following != "=":
            raise IPLLexicalError(f"unexpected character '{following}'", self.line, ErrorCode.EBAD_SYMBOL)
        self._advance()
        return Token("BANG_EQUAL", "!=", self.line)

    def _consume_number(self) -> Token:
        line = self.line
        digits = self._consume_while(lambda c: c.isascii() and c.isdigit())
        return Token("NUMBER", digits, line, wrap_int(int(digits)))

    def _consume_identifier(self) -> Token:
        line = self.line
        value = self._consume_while(_is_identifier_part)
        token_type: str = value.upper() if value in KEYWORDS else "IDENTIFIER"
        return Token(token_type, value, line)

    def _consume_while(self, predicate: Callable[[str], bool]) -> str:
        chars: List[str] = []
        text = self.text
        n = len(text)
        while self.index < n and predicate(text[self.index]):
            chars.append(text[self.index])
            self._advance()
        if len(chars) > self.max_lexeme:
            raise IPLLexicalError(
                f"lexeme exceeds {self.max_lexeme} characters",
                self.line,
                ErrorCode.ELONG_LEXEME,
            )
        return "".join(chars)

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
        self.index += 1


def _is_identifier_start(ch: str) -> bool:
    return ch.isascii() and ch.isalpha()


def _is_identifier_part(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch == "_")
