"""
Lexer for capscript.

Converts source text into a stream of tokens for the parser.
Supports:
- Keywords, identifiers and the literals true/false/nil
- Single-quoted string literals (no escape processing, may span lines)
- Number literals with '_' digit separators and an optional fraction
- '#' line comments

Lexical errors never stop the scan. Each one is recorded in
``Lexer.diagnostics`` and emitted as an ERROR token, so the token stream
always covers the whole input and ends with EOF.
"""

import logging
from typing import List, Optional, Iterator
from .tokens import (
    Token, TokenType, SourceLocation, SourceSpan, KEYWORDS,
)
from .errors import (
    LexerError,
    DiagnosticCollector,
    error_unexpected_character,
    error_unterminated_string,
    error_invalid_number_literal,
)

logger = logging.getLogger(__name__)


SINGLE_CHAR_TOKENS = {
    '+': TokenType.PLUS,
    '-': TokenType.MINUS,
    '*': TokenType.STAR,
    '/': TokenType.SLASH,
    '%': TokenType.PERCENT,
    '(': TokenType.LPAREN,
    ')': TokenType.RPAREN,
    '{': TokenType.LBRACE,
    '}': TokenType.RBRACE,
    ',': TokenType.COMMA,
    '.': TokenType.DOT,
    '|': TokenType.PIPE,
}


def _is_ident_start(ch: str) -> bool:
    return ('a' <= ch <= 'z') or ('A' <= ch <= 'Z') or ch == '_'


def _is_ident_char(ch: str) -> bool:
    return _is_ident_start(ch) or _is_digit(ch)


def _is_digit(ch: str) -> bool:
    return '0' <= ch <= '9'


class Lexer:
    """
    Tokenizer for capscript.

    Usage:
        lexer = Lexer(source_code)
        tokens = lexer.tokenize()
        if lexer.diagnostics.has_errors:
            ...

    Or for streaming:
        lexer = Lexer(source_code)
        for token in lexer:
            process(token)
    """

    def __init__(self, source: str, filename: Optional[str] = None):
        self.source = source
        self.filename = filename
        self.pos = 0            # Current position in source
        self.line = 1           # Current line (1-indexed)
        self.column = 1         # Current column (1-indexed)
        self._lines: Optional[List[str]] = None  # Cached line list
        self._done = False
        self.diagnostics = DiagnosticCollector()

    @property
    def lines(self) -> List[str]:
        """Lazy-load line list for error reporting."""
        if self._lines is None:
            self._lines = self.source.splitlines()
        return self._lines

    def get_source_line(self, line_num: int) -> Optional[str]:
        """Get a specific line of source (1-indexed)."""
        if 1 <= line_num <= len(self.lines):
            return self.lines[line_num - 1]
        return None

    def _location(self) -> SourceLocation:
        """Get current source location."""
        return SourceLocation(self.line, self.column, self.pos, self.filename)

    def _span(self, start: SourceLocation) -> SourceSpan:
        """Create a span from start to current position."""
        return SourceSpan(start, self._location())

    def _peek(self, offset: int = 0) -> str:
        """Look at character at current position + offset without consuming."""
        idx = self.pos + offset
        if idx >= len(self.source):
            return '\0'
        return self.source[idx]

    def _advance(self) -> str:
        """Consume and return current character."""
        if self.pos >= len(self.source):
            return '\0'
        ch = self.source[self.pos]
        self.pos += 1
        if ch == '\n':
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        return ch

    def _match(self, expected: str) -> bool:
        """Consume character if it matches expected."""
        if self._peek() == expected:
            self._advance()
            return True
        return False

    def _is_at_end(self) -> bool:
        """Check if we've reached end of source."""
        return self.pos >= len(self.source)

    def _skip_whitespace_and_comments(self) -> None:
        """Skip whitespace (including newlines) and '#' comments."""
        while not self._is_at_end():
            ch = self._peek()
            if ch in ' \t\r\n':
                self._advance()
            elif ch == '#':
                while self._peek() != '\n' and not self._is_at_end():
                    self._advance()
            else:
                break

    def _make_token(self, token_type: TokenType, value, start: SourceLocation,
                    lexeme: Optional[str] = None) -> Token:
        """Create a token."""
        span = self._span(start)
        if lexeme is None:
            lexeme = self.source[start.offset:self.pos]
        return Token(token_type, value, lexeme, span)

    def _error_token(self, error: LexerError, start: SourceLocation) -> Token:
        """Record a lexical error and wrap it in an ERROR token."""
        self.diagnostics.add_error(error)
        logger.debug("lexical error at %s: %s", start, error.diagnostic.message)
        return self._make_token(TokenType.ERROR, error, start)

    def _scan_string(self) -> Token:
        """Scan a single-quoted string literal."""
        start = self._location()
        self._advance()  # consume opening quote

        while not self._is_at_end() and self._peek() != "'":
            self._advance()

        if self._is_at_end():
            error = error_unterminated_string(
                self._span(start),
                self.get_source_line(start.line)
            )
            return self._error_token(error, start)

        self._advance()  # consume closing quote
        value = self.source[start.offset + 1:self.pos - 1]
        return self._make_token(TokenType.STRING, value, start)

    def _scan_digits(self) -> bool:
        """Scan a digit run with '_' separators. Returns False if a separator is misplaced."""
        well_formed = True
        while _is_digit(self._peek()) or self._peek() == '_':
            if self._peek() == '_' and not _is_digit(self._peek(1)):
                well_formed = False
            self._advance()
        return well_formed

    def _scan_number(self) -> Token:
        """Scan a numeric literal."""
        start = self._location()
        well_formed = self._scan_digits()

        # Fraction: a single '.' followed by a digit
        if self._peek() == '.' and _is_digit(self._peek(1)):
            self._advance()  # consume '.'
            well_formed = self._scan_digits() and well_formed

            # A second fraction like 1.2.3 is malformed, not a property access
            if self._peek() == '.' and _is_digit(self._peek(1)):
                well_formed = False
                self._advance()
                self._scan_digits()

        # Letters glued to the digits (12abc) make the whole run malformed
        if _is_ident_char(self._peek()):
            well_formed = False
            while _is_ident_char(self._peek()):
                self._advance()

        lexeme = self.source[start.offset:self.pos]
        if well_formed:
            try:
                value = float(lexeme.replace('_', ''))
                return self._make_token(TokenType.NUMBER, value, start, lexeme)
            except ValueError:
                pass
        error = error_invalid_number_literal(
            lexeme, self._span(start), self.get_source_line(start.line)
        )
        return self._error_token(error, start)

    def _scan_identifier_or_keyword(self) -> Token:
        """Scan an identifier or keyword."""
        start = self._location()

        while _is_ident_char(self._peek()):
            self._advance()

        lexeme = self.source[start.offset:self.pos]

        if lexeme in KEYWORDS:
            return self._make_token(KEYWORDS[lexeme], lexeme, start, lexeme)

        return self._make_token(TokenType.IDENTIFIER, lexeme, start, lexeme)

    def _scan_token(self) -> Token:
        """Scan the next token."""
        self._skip_whitespace_and_comments()

        if self._is_at_end():
            self._done = True
            return self._make_token(TokenType.EOF, None, self._location(), "")

        start = self._location()
        ch = self._peek()

        if ch == "'":
            return self._scan_string()

        if _is_digit(ch):
            return self._scan_number()

        if _is_ident_start(ch):
            return self._scan_identifier_or_keyword()

        self._advance()

        # Two-character operators
        if ch == ':' and self._match('='):
            return self._make_token(TokenType.ASSIGN, ":=", start)
        if ch == '=' and self._match('='):
            return self._make_token(TokenType.EQ, "==", start)
        if ch == '!' and self._match('='):
            return self._make_token(TokenType.NE, "!=", start)
        if ch == '<':
            if self._match('='):
                return self._make_token(TokenType.LE, "<=", start)
            return self._make_token(TokenType.LT, "<", start)
        if ch == '>':
            if self._match('='):
                return self._make_token(TokenType.GE, ">=", start)
            return self._make_token(TokenType.GT, ">", start)
        if ch == ':':
            return self._make_token(TokenType.COLON, ch, start)

        if ch in SINGLE_CHAR_TOKENS:
            return self._make_token(SINGLE_CHAR_TOKENS[ch], ch, start)

        error = error_unexpected_character(
            ch, self._span(start), self.get_source_line(start.line)
        )
        return self._error_token(error, start)

    def tokenize(self) -> List[Token]:
        """Tokenize the entire source, returning a list of tokens ending in EOF."""
        return list(self)

    def __iter__(self) -> Iterator[Token]:
        """Iterate over tokens."""
        while not self._done:
            yield self._scan_token()


def tokenize(source: str, filename: Optional[str] = None, strict: bool = True) -> List[Token]:
    """
    Convenience function to tokenize source code.

    Args:
        source: The source code to tokenize
        filename: Optional filename for error messages
        strict: Raise the first lexical error after scanning. When False,
            errors stay in the stream as ERROR tokens.

    Returns:
        List of tokens, always ending with EOF

    Raises:
        LexerError: If strict and the source contains a lexical error
    """
    lexer = Lexer(source, filename)
    tokens = lexer.tokenize()
    if strict and lexer.diagnostics.has_errors:
        raise lexer.diagnostics.errors[0]
    return tokens
