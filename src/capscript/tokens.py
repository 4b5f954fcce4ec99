"""
Token types for the capscript lexer.

Error code ranges:
- E0xx: Lexer errors
- E1xx: Parser errors
- E4xx: Runtime errors
"""

from enum import Enum, auto
from dataclasses import dataclass
from typing import Any, Optional


class TokenType(Enum):
    """All token types recognized by the lexer."""

    # --- Literals ---
    NUMBER = auto()             # 42, 3.14, 1_000
    STRING = auto()             # 'hello'
    TRUE = auto()               # true
    FALSE = auto()              # false
    NIL = auto()                # nil

    # --- Identifiers ---
    IDENTIFIER = auto()         # user-defined names

    # --- Keywords ---
    IF = auto()                 # if
    THEN = auto()               # then
    ELSE = auto()               # else
    AND = auto()                # and
    OR = auto()                 # or
    NOT = auto()                # not
    WHILE = auto()              # while
    MATCH = auto()              # match

    # --- Arithmetic operators ---
    PLUS = auto()               # +
    MINUS = auto()              # -
    STAR = auto()               # *
    SLASH = auto()              # /
    PERCENT = auto()            # %

    # --- Comparison operators ---
    LT = auto()                 # <
    GT = auto()                 # >
    LE = auto()                 # <=
    GE = auto()                 # >=
    EQ = auto()                 # ==
    NE = auto()                 # !=

    # --- Assignment ---
    ASSIGN = auto()             # :=

    # --- Delimiters ---
    LPAREN = auto()             # (
    RPAREN = auto()             # )
    LBRACE = auto()             # {
    RBRACE = auto()             # }
    COLON = auto()              # :
    COMMA = auto()              # ,
    DOT = auto()                # .
    PIPE = auto()               # |

    # --- Special ---
    ERROR = auto()              # lexical error, value holds the LexerError
    EOF = auto()                # end of input


@dataclass(frozen=True)
class SourceLocation:
    """Represents a position in source code."""
    line: int           # 1-indexed line number
    column: int         # 1-indexed column number
    offset: int         # 0-indexed character offset from start
    filename: Optional[str] = None

    def __str__(self) -> str:
        if self.filename:
            return f"{self.filename}:{self.line}:{self.column}"
        return f"{self.line}:{self.column}"


@dataclass(frozen=True)
class SourceSpan:
    """Represents a range in source code."""
    start: SourceLocation
    end: SourceLocation

    def __str__(self) -> str:
        if self.start.filename:
            return f"{self.start.filename}:{self.start.line}:{self.start.column}-{self.end.line}:{self.end.column}"
        return f"{self.start.line}:{self.start.column}-{self.end.line}:{self.end.column}"


@dataclass(frozen=True)
class Token:
    """A single token from the lexer."""
    type: TokenType
    value: Any              # float for NUMBER, str for STRING/IDENTIFIER, LexerError for ERROR
    lexeme: str             # The original source text
    span: SourceSpan        # Location in source

    def __str__(self) -> str:
        if self.type in (TokenType.NUMBER, TokenType.STRING, TokenType.IDENTIFIER):
            return f"{self.type.name}({self.value!r})"
        if self.type == TokenType.ERROR:
            return f"ERROR({self.lexeme!r})"
        return self.type.name

    def describe(self) -> str:
        """Short human-readable form used in diagnostics."""
        if self.type == TokenType.EOF:
            return "end of input"
        return f"'{self.lexeme}'"


# Keyword mapping - maps string to token type
KEYWORDS: dict[str, TokenType] = {
    "if": TokenType.IF,
    "then": TokenType.THEN,
    "else": TokenType.ELSE,
    "and": TokenType.AND,
    "or": TokenType.OR,
    "not": TokenType.NOT,
    "while": TokenType.WHILE,
    "match": TokenType.MATCH,

    # Literal keywords
    "true": TokenType.TRUE,
    "false": TokenType.FALSE,
    "nil": TokenType.NIL,
}


# Display names used in "expected ..." messages
TOKEN_DESCRIPTIONS: dict[TokenType, str] = {
    TokenType.LPAREN: "'('",
    TokenType.RPAREN: "')'",
    TokenType.LBRACE: "'{'",
    TokenType.RBRACE: "'}'",
    TokenType.COLON: "':'",
    TokenType.COMMA: "','",
    TokenType.DOT: "'.'",
    TokenType.PIPE: "'|'",
    TokenType.ASSIGN: "':='",
    TokenType.THEN: "'then'",
    TokenType.IDENTIFIER: "identifier",
    TokenType.EOF: "end of input",
}


COMPARISON_OPERATORS = frozenset({
    TokenType.EQ, TokenType.NE,
    TokenType.LT, TokenType.GT, TokenType.LE, TokenType.GE,
})


def describe_token_type(token_type: TokenType) -> str:
    """Get the display name of a token type."""
    return TOKEN_DESCRIPTIONS.get(token_type, token_type.name.lower())
