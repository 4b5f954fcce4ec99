"""
Script exceptions and diagnostics.

Error code ranges:
- E0xx: Lexer errors
- E1xx: Parser errors
- E4xx: Runtime errors
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, TYPE_CHECKING
from .tokens import SourceSpan, TokenType, describe_token_type

if TYPE_CHECKING:
    from .tokens import Token


class ErrorSeverity(Enum):
    """Severity levels for diagnostics."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"


@dataclass
class Diagnostic:
    """A single diagnostic message (error, warning, etc.)."""
    code: str                       # E001, E101, etc.
    message: str                    # Human-readable message
    severity: ErrorSeverity
    span: Optional[SourceSpan] = None
    source_line: Optional[str] = None   # The actual line of source code
    hints: List[str] = field(default_factory=list)

    def format(self, show_source: bool = True) -> str:
        """Format the diagnostic for display."""
        parts = []

        # Header: location: severity[code]: message
        if self.span is not None:
            parts.append(f"{self.span.start}: {self.severity.value}[{self.code}]: {self.message}")
        else:
            parts.append(f"{self.severity.value}[{self.code}]: {self.message}")

        # Source line with caret
        if show_source and self.source_line is not None and self.span is not None:
            parts.append("  |")
            line_num = str(self.span.start.line)
            parts.append(f"{line_num:>3} | {self.source_line}")

            col = self.span.start.column
            end_col = self.span.end.column if self.span.start.line == self.span.end.line else len(self.source_line) + 1
            underline_len = max(1, end_col - col)
            parts.append(f"    | {' ' * (col - 1)}{'^' * underline_len}")

        for hint in self.hints:
            parts.append(f"    = hint: {hint}")

        return "\n".join(parts)

    def to_json(self) -> dict:
        """Convert to JSON-serializable dict for tooling integration."""
        data = {
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "hints": self.hints,
        }
        if self.span is not None:
            data["range"] = {
                "start": {
                    "line": self.span.start.line,
                    "column": self.span.start.column,
                    "offset": self.span.start.offset,
                },
                "end": {
                    "line": self.span.end.line,
                    "column": self.span.end.column,
                    "offset": self.span.end.offset,
                },
            }
        return data


class DslError(Exception):
    """Base exception for script errors."""

    def __init__(self, diagnostic: Diagnostic):
        self.diagnostic = diagnostic
        super().__init__(diagnostic.message)

    @property
    def code(self) -> str:
        return self.diagnostic.code

    @property
    def span(self) -> Optional[SourceSpan]:
        return self.diagnostic.span

    def attach_source(self, lines: List[str]) -> None:
        """Fill in the offending source line if it is not known yet."""
        span = self.diagnostic.span
        if self.diagnostic.source_line is None and span is not None:
            if 1 <= span.start.line <= len(lines):
                self.diagnostic.source_line = lines[span.start.line - 1]

    def __str__(self) -> str:
        return self.diagnostic.format()


class ProfileError(ValueError):
    """Invalid sandbox profile configuration."""
    pass


# =============================================================================
# Lexer errors (E0xx)
# =============================================================================

class LexerError(DslError):
    """Error during lexical analysis (E0xx)."""
    pass


class UnexpectedCharacterError(LexerError):
    """E001: a character that starts no token."""

    def __init__(self, diagnostic: Diagnostic, char: str):
        super().__init__(diagnostic)
        self.char = char


class UnterminatedStringError(LexerError):
    """E002: string literal without its closing quote."""
    pass


class InvalidNumberError(LexerError):
    """E006: malformed numeric literal."""

    def __init__(self, diagnostic: Diagnostic, text: str):
        super().__init__(diagnostic)
        self.text = text


def error_unexpected_character(char: str, span: SourceSpan, source_line: str = None) -> UnexpectedCharacterError:
    """E001: Unexpected character."""
    diag = Diagnostic(
        code="E001",
        message=f"unexpected character '{char}'",
        severity=ErrorSeverity.ERROR,
        span=span,
        source_line=source_line,
    )
    return UnexpectedCharacterError(diag, char)


def error_unterminated_string(span: SourceSpan, source_line: str = None) -> UnterminatedStringError:
    """E002: Unterminated string literal."""
    diag = Diagnostic(
        code="E002",
        message="unterminated string literal",
        severity=ErrorSeverity.ERROR,
        span=span,
        source_line=source_line,
        hints=["string literals must be closed with a matching single quote"],
    )
    return UnterminatedStringError(diag)


def error_invalid_number_literal(text: str, span: SourceSpan, source_line: str = None) -> InvalidNumberError:
    """E006: Invalid number literal."""
    diag = Diagnostic(
        code="E006",
        message=f"invalid number literal '{text}'",
        severity=ErrorSeverity.ERROR,
        span=span,
        source_line=source_line,
        hints=["underscores may only separate digits: 1_000, 3.141_592"],
    )
    return InvalidNumberError(diag, text)


# =============================================================================
# Parser errors (E1xx)
# =============================================================================

class ParserError(DslError):
    """Error during parsing (E1xx)."""

    def __init__(self, diagnostic: Diagnostic, token: Optional["Token"] = None):
        super().__init__(diagnostic)
        self.token = token


class UnexpectedTokenError(ParserError):
    """E101: a token that cannot start or continue an expression here."""

    def __init__(self, diagnostic: Diagnostic, token: "Token", expected: str):
        super().__init__(diagnostic, token)
        self.expected = expected


class ExpectedTokenError(ParserError):
    """E102: a specific token kind was required but something else was found."""

    def __init__(self, diagnostic: Diagnostic, token: "Token", expected: TokenType):
        super().__init__(diagnostic, token)
        self.expected = expected


class InvalidAssignmentTargetError(ParserError):
    """E103: left side of ':=' is not an identifier or property access."""
    pass


class ChainedComparisonError(ParserError):
    """E105: comparisons such as 'a < b < c' do not chain."""
    pass


def error_unexpected_token(expected: str, token: "Token") -> UnexpectedTokenError:
    """E101: Unexpected token."""
    diag = Diagnostic(
        code="E101",
        message=f"expected {expected}, found {token.describe()}",
        severity=ErrorSeverity.ERROR,
        span=token.span,
    )
    return UnexpectedTokenError(diag, token, expected)


def error_expected_token(expected: TokenType, token: "Token") -> ExpectedTokenError:
    """E102: Missing required token."""
    diag = Diagnostic(
        code="E102",
        message=f"expected {describe_token_type(expected)}, found {token.describe()}",
        severity=ErrorSeverity.ERROR,
        span=token.span,
    )
    return ExpectedTokenError(diag, token, expected)


def error_invalid_assignment_target(token: "Token", span: SourceSpan) -> InvalidAssignmentTargetError:
    """E103: Invalid assignment target."""
    diag = Diagnostic(
        code="E103",
        message="invalid assignment target",
        severity=ErrorSeverity.ERROR,
        span=span,
        hints=["only names and property accesses (a.b) can appear left of ':='"],
    )
    return InvalidAssignmentTargetError(diag, token)


def error_nesting_too_deep(token: "Token") -> ParserError:
    """E104: Expression nesting exceeds the parser's recursion limit."""
    diag = Diagnostic(
        code="E104",
        message="expression is nested too deeply",
        severity=ErrorSeverity.ERROR,
        span=token.span,
    )
    return ParserError(diag, token)


def error_chained_comparison(token: "Token") -> ChainedComparisonError:
    """E105: Chained comparison."""
    diag = Diagnostic(
        code="E105",
        message=f"comparison operators cannot be chained, found {token.describe()}",
        severity=ErrorSeverity.ERROR,
        span=token.span,
        hints=["combine comparisons with 'and': a < b and b < c"],
    )
    return ChainedComparisonError(diag, token)


# =============================================================================
# Runtime errors (E4xx)
# =============================================================================

class EvaluationError(DslError):
    """Error during evaluation (E4xx)."""
    pass


class UndefinedVariableError(EvaluationError):
    """E401: name not bound in any enclosing scope."""

    def __init__(self, diagnostic: Diagnostic, name: str):
        super().__init__(diagnostic)
        self.name = name


class TypeMismatchError(EvaluationError):
    """E402: operand or receiver of the wrong kind."""

    def __init__(self, diagnostic: Diagnostic, expected: str, actual: str):
        super().__init__(diagnostic)
        self.expected = expected
        self.actual = actual


class ArityError(EvaluationError):
    """E403: wrong number of call arguments."""

    def __init__(self, diagnostic: Diagnostic, expected: str, actual: int):
        super().__init__(diagnostic)
        self.expected = expected
        self.actual = actual


class CapabilityDeniedError(EvaluationError):
    """E404: effectful built-in used without the matching capability."""

    def __init__(self, diagnostic: Diagnostic, capability: str, operation: str):
        super().__init__(diagnostic)
        self.capability = capability
        self.operation = operation


class BudgetExceededError(EvaluationError):
    """Common base for resource budget breaches."""

    def __init__(self, diagnostic: Diagnostic, limit: Optional[int], observed: int):
        super().__init__(diagnostic)
        self.limit = limit
        self.observed = observed


class StackOverflowError(BudgetExceededError):
    """E405: call depth exceeded."""
    pass


class TimeLimitExceededError(BudgetExceededError):
    """E406: wall-clock budget exceeded."""
    pass


class HeapLimitExceededError(BudgetExceededError):
    """E407: live value graph exceeded."""
    pass


class MatchError(EvaluationError):
    """E408: no match arm accepted the subject."""
    pass


class HostError(EvaluationError):
    """E410: the host failed while performing a permitted effect."""
    pass


def _runtime_diag(code: str, message: str, span: Optional[SourceSpan],
                  hints: Optional[List[str]] = None) -> Diagnostic:
    return Diagnostic(
        code=code,
        message=message,
        severity=ErrorSeverity.ERROR,
        span=span,
        hints=hints or [],
    )


def error_undefined_variable(name: str, span: Optional[SourceSpan]) -> UndefinedVariableError:
    """E401: Undefined variable."""
    return UndefinedVariableError(
        _runtime_diag("E401", f"undefined variable '{name}'", span), name
    )


def error_type_mismatch(expected: str, actual: str, span: Optional[SourceSpan],
                        context: str = "") -> TypeMismatchError:
    """E402: Type mismatch."""
    prefix = f"{context}: " if context else ""
    return TypeMismatchError(
        _runtime_diag("E402", f"{prefix}expected {expected}, found {actual}", span),
        expected, actual,
    )


def error_no_property(kind: str, name: str, span: Optional[SourceSpan]) -> TypeMismatchError:
    """E402: Property not defined for the receiver's kind."""
    return TypeMismatchError(
        _runtime_diag("E402", f"{kind} has no property '{name}'", span),
        f"a value with property '{name}'", kind,
    )


def error_arity(callee: str, expected: str, actual: int, span: Optional[SourceSpan]) -> ArityError:
    """E403: Wrong number of arguments."""
    return ArityError(
        _runtime_diag("E403", f"{callee} expects {expected} argument(s), got {actual}", span),
        expected, actual,
    )


def error_capability_denied(capability: str, operation: str,
                            span: Optional[SourceSpan]) -> CapabilityDeniedError:
    """E404: Capability denied by the active profile."""
    return CapabilityDeniedError(
        _runtime_diag(
            "E404",
            f"'{operation}' requires the '{capability}' capability",
            span,
            hints=[f"enable capabilities.{capability} in the profile to allow it"],
        ),
        capability, operation,
    )


def error_stack_overflow(limit: int, depth: int, span: Optional[SourceSpan]) -> StackOverflowError:
    """E405: Call depth exceeded."""
    return StackOverflowError(
        _runtime_diag("E405", f"stack overflow: call depth {depth} exceeds limit {limit}", span),
        limit, depth,
    )


def error_host_stack_exhausted(depth: int, limit: Optional[int], span: Optional[SourceSpan]) -> StackOverflowError:
    """E405: The host ran out of stack before any call depth budget was reached."""
    return StackOverflowError(
        _runtime_diag(
            "E405", f"stack overflow: host recursion limit reached at call depth {depth}", span,
            hints=["set max_stack_depth in the profile to bound recursion"],
        ),
        limit, depth,
    )


def error_time_limit(limit_ms: int, elapsed_ms: int, span: Optional[SourceSpan]) -> TimeLimitExceededError:
    """E406: Time budget exceeded."""
    return TimeLimitExceededError(
        _runtime_diag("E406", f"time limit exceeded: {elapsed_ms} ms > {limit_ms} ms", span),
        limit_ms, elapsed_ms,
    )


def error_heap_limit(limit: int, size: int, span: Optional[SourceSpan]) -> HeapLimitExceededError:
    """E407: Heap budget exceeded."""
    return HeapLimitExceededError(
        _runtime_diag("E407", f"heap limit exceeded: {size} live values > {limit}", span),
        limit, size,
    )


def error_no_match(subject: str, span: Optional[SourceSpan]) -> MatchError:
    """E408: No match arm matched."""
    return MatchError(
        _runtime_diag(
            "E408", f"no match arm matched {subject}", span,
            hints=["add a '_' arm to handle every other value"],
        )
    )


def error_host_failure(operation: str, reason: str, span: Optional[SourceSpan]) -> HostError:
    """E410: Host operation failed."""
    return HostError(_runtime_diag("E410", f"{operation} failed: {reason}", span))


class DiagnosticCollector:
    """Collects diagnostics during compilation."""

    def __init__(self):
        self.diagnostics: List[Diagnostic] = []
        self.errors: List[DslError] = []
        self._error_count = 0

    def add(self, diagnostic: Diagnostic) -> None:
        """Add a diagnostic."""
        self.diagnostics.append(diagnostic)
        if diagnostic.severity == ErrorSeverity.ERROR:
            self._error_count += 1

    def add_error(self, error: DslError) -> None:
        """Add an error exception as a diagnostic."""
        self.errors.append(error)
        self.add(error.diagnostic)

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def warning_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity == ErrorSeverity.WARNING)

    @property
    def has_errors(self) -> bool:
        return self._error_count > 0

    def format_all(self, show_source: bool = True) -> str:
        """Format all diagnostics for display."""
        parts = [d.format(show_source) for d in self.diagnostics]
        if self._error_count > 0:
            parts.append(f"\n{self._error_count} error(s), {self.warning_count} warning(s)")
        elif self.warning_count > 0:
            parts.append(f"\n{self.warning_count} warning(s)")
        return "\n\n".join(parts)

    def to_json(self) -> dict:
        """Convert all diagnostics to JSON format."""
        return {
            "diagnostics": [d.to_json() for d in self.diagnostics],
            "error_count": self._error_count,
            "warning_count": self.warning_count,
        }
