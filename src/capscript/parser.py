"""
Recursive descent parser for capscript.

Converts a token stream into a tuple of top-level expressions.
"""

import logging
from typing import List, Optional, Tuple
from .tokens import Token, TokenType, SourceSpan, COMPARISON_OPERATORS
from .ast import (
    Expression, Literal, Identifier, ListLiteral, MapLiteral, LambdaExpr,
    Block, IfExpr, WhileExpr, MatchExpr, MatchArm, WildcardPattern,
    BinaryOp, UnaryOp, Call, PropertyAccess, Assignment,
)
from .errors import (
    ParserError,
    error_unexpected_token,
    error_expected_token,
    error_invalid_assignment_target,
    error_nesting_too_deep,
    error_chained_comparison,
)

logger = logging.getLogger(__name__)


class Parser:
    """
    Recursive descent parser for capscript.

    Usage:
        parser = Parser(tokens)
        program = parser.parse_program()

    One method per precedence level, loosest first:
        assignment  :=          (right-associative)
        logical     and or
        comparison  == != < > <= >=   (non-chaining)
        additive    + -
        multiplicative  * / %
        unary       - not
        postfix     call, trailing lambda, .property
        primary
    """

    # Binary arithmetic operators (higher = tighter binding)
    PRECEDENCE = {
        TokenType.PLUS: 1,
        TokenType.MINUS: 1,
        TokenType.STAR: 2,
        TokenType.SLASH: 2,
        TokenType.PERCENT: 2,
    }

    LITERAL_VALUES = {
        TokenType.TRUE: True,
        TokenType.FALSE: False,
        TokenType.NIL: None,
    }

    def __init__(self, tokens: List[Token]):
        if not tokens or tokens[-1].type != TokenType.EOF:
            raise ValueError("token stream must end with an EOF token")
        self.tokens = tokens
        self.pos = 0

    # =========================================================================
    # Token Navigation
    # =========================================================================

    def _current(self) -> Token:
        """Get current token."""
        if self.pos >= len(self.tokens):
            return self.tokens[-1]  # EOF
        return self.tokens[self.pos]

    def _previous(self) -> Token:
        return self.tokens[max(0, self.pos - 1)]

    def _is_at_end(self) -> bool:
        """Check if at end of tokens."""
        return self._current().type == TokenType.EOF

    def _check(self, token_type: TokenType) -> bool:
        """Check if current token is of given type."""
        return self._current().type == token_type

    def _check_any(self, *token_types: TokenType) -> bool:
        """Check if current token is any of given types."""
        return self._current().type in token_types

    def _advance(self) -> Token:
        """Consume and return current token."""
        token = self._current()
        if not self._is_at_end():
            self.pos += 1
        return token

    def _consume(self, token_type: TokenType) -> Token:
        """Consume token of expected type, or raise error."""
        if self._check(token_type):
            return self._advance()
        token = self._current()
        self._raise_lexical(token)
        raise error_expected_token(token_type, token)

    def _match(self, *token_types: TokenType) -> Optional[Token]:
        """Consume token if it matches any of the given types."""
        if self._current().type in token_types:
            return self._advance()
        return None

    def _error(self, expected: str) -> ParserError:
        """Raise a parser error at the current token."""
        token = self._current()
        self._raise_lexical(token)
        raise error_unexpected_token(expected, token)

    @staticmethod
    def _raise_lexical(token: Token) -> None:
        """Fail fast on the first lexical error token reached."""
        if token.type == TokenType.ERROR:
            raise token.value

    def _span_from(self, start: Token) -> SourceSpan:
        """Create a span from start token to the end of the previous token."""
        return SourceSpan(start.span.start, self._previous().span.end)

    # =========================================================================
    # Expression Parsing
    # =========================================================================

    def _parse_expression(self) -> Expression:
        """Parse an expression (lowest precedence: assignment)."""
        return self._parse_assignment()

    def _parse_assignment(self) -> Expression:
        """Parse 'target := value' (right-associative)."""
        target = self._parse_logical()

        if self._check(TokenType.ASSIGN):
            op = self._advance()
            if not isinstance(target, (Identifier, PropertyAccess)):
                raise error_invalid_assignment_target(op, target.span)
            value = self._parse_assignment()
            return Assignment(
                span=SourceSpan(target.span.start, value.span.end),
                target=target,
                value=value,
            )

        return target

    def _parse_logical(self) -> Expression:
        """Parse 'and' / 'or' chains (left-associative, one level)."""
        left = self._parse_comparison()

        while self._check_any(TokenType.AND, TokenType.OR):
            op = self._advance()
            right = self._parse_comparison()
            left = BinaryOp(
                span=SourceSpan(left.span.start, right.span.end),
                left=left,
                operator=op.type,
                right=right,
            )

        return left

    def _parse_comparison(self) -> Expression:
        """Parse a single comparison; 'a < b < c' is rejected."""
        left = self._parse_binary_expr(1)

        if self._current().type in COMPARISON_OPERATORS:
            op = self._advance()
            right = self._parse_binary_expr(1)
            if self._current().type in COMPARISON_OPERATORS:
                raise error_chained_comparison(self._current())
            left = BinaryOp(
                span=SourceSpan(left.span.start, right.span.end),
                left=left,
                operator=op.type,
                right=right,
            )

        return left

    def _parse_binary_expr(self, min_precedence: int) -> Expression:
        """Parse arithmetic with precedence climbing (all left-associative)."""
        left = self._parse_unary_expr()

        while True:
            op_token = self._current()
            precedence = self.PRECEDENCE.get(op_token.type)

            if precedence is None or precedence < min_precedence:
                break

            self._advance()  # consume operator
            right = self._parse_binary_expr(precedence + 1)

            left = BinaryOp(
                span=SourceSpan(left.span.start, right.span.end),
                left=left,
                operator=op_token.type,
                right=right,
            )

        return left

    def _parse_unary_expr(self) -> Expression:
        """Parse unary expressions (not, -)."""
        if self._check_any(TokenType.NOT, TokenType.MINUS):
            op = self._advance()
            operand = self._parse_unary_expr()
            return UnaryOp(
                span=SourceSpan(op.span.start, operand.span.end),
                operator=op.type,
                operand=operand,
            )

        return self._parse_postfix_expr()

    def _parse_postfix_expr(self) -> Expression:
        """Parse postfix chains: calls, trailing lambdas, property access."""
        expr = self._parse_primary_expr()

        while True:
            if self._check(TokenType.LPAREN):
                args = self._parse_arguments()
                # Trailing closure: f(a) |x| body  ==  f(a, |x| body)
                if self._check(TokenType.PIPE):
                    args.append(self._parse_lambda())
                expr = Call(
                    span=SourceSpan(expr.span.start, self._previous().span.end),
                    callee=expr,
                    arguments=tuple(args),
                )
            elif self._check(TokenType.PIPE):
                # Bare lambda application: f |x| body  ==  f(|x| body)
                lam = self._parse_lambda()
                expr = Call(
                    span=SourceSpan(expr.span.start, lam.span.end),
                    callee=expr,
                    arguments=(lam,),
                )
            elif self._check(TokenType.DOT):
                self._advance()  # consume '.'
                name = self._consume(TokenType.IDENTIFIER).value
                expr = PropertyAccess(
                    span=SourceSpan(expr.span.start, self._previous().span.end),
                    object=expr,
                    name=name,
                )
            else:
                break

        return expr

    def _parse_arguments(self) -> List[Expression]:
        """Parse a parenthesized, comma-separated argument list."""
        self._consume(TokenType.LPAREN)

        args = []
        if not self._check(TokenType.RPAREN):
            args.append(self._parse_expression())
            while self._match(TokenType.COMMA):
                if self._check(TokenType.RPAREN):
                    break  # Allow trailing comma
                args.append(self._parse_expression())

        self._consume(TokenType.RPAREN)
        return args

    def _parse_primary_expr(self) -> Expression:
        """Parse primary expressions (literals, identifiers, grouped, etc.)."""
        token = self._current()

        if token.type in (TokenType.NUMBER, TokenType.STRING):
            self._advance()
            return Literal(span=token.span, value=token.value, literal_type=token.type)

        if token.type in self.LITERAL_VALUES:
            self._advance()
            return Literal(
                span=token.span,
                value=self.LITERAL_VALUES[token.type],
                literal_type=token.type,
            )

        if token.type == TokenType.IDENTIFIER:
            self._advance()
            return Identifier(span=token.span, name=token.value)

        if token.type == TokenType.LPAREN:
            return self._parse_paren_expr()
        if token.type == TokenType.LBRACE:
            return self._parse_block()
        if token.type == TokenType.PIPE:
            return self._parse_lambda()
        if token.type == TokenType.IF:
            return self._parse_if_expr()
        if token.type == TokenType.WHILE:
            return self._parse_while_expr()
        if token.type == TokenType.MATCH:
            return self._parse_match_expr()

        self._error("expression")

    def _parse_paren_expr(self) -> Expression:
        """Parse '(' forms: grouping, list literal or map literal."""
        start = self._consume(TokenType.LPAREN)

        # (,) is the empty list, (:) the empty map
        if self._match(TokenType.COMMA):
            self._consume(TokenType.RPAREN)
            return ListLiteral(span=self._span_from(start), elements=())
        if self._match(TokenType.COLON):
            self._consume(TokenType.RPAREN)
            return MapLiteral(span=self._span_from(start), entries=())

        first = self._parse_expression()

        if self._match(TokenType.COMMA):
            elements = [first]
            while not self._check(TokenType.RPAREN):
                elements.append(self._parse_expression())
                if not self._match(TokenType.COMMA):
                    break
            self._consume(TokenType.RPAREN)
            return ListLiteral(span=self._span_from(start), elements=tuple(elements))

        if self._match(TokenType.COLON):
            entries = [(first, self._parse_expression())]
            while self._match(TokenType.COMMA):
                if self._check(TokenType.RPAREN):
                    break  # Allow trailing comma
                key = self._parse_expression()
                self._consume(TokenType.COLON)
                entries.append((key, self._parse_expression()))
            self._consume(TokenType.RPAREN)
            return MapLiteral(span=self._span_from(start), entries=tuple(entries))

        self._consume(TokenType.RPAREN)
        return first

    def _parse_block(self) -> Block:
        """Parse '{' expression* '}'."""
        start = self._consume(TokenType.LBRACE)
        expressions = []

        while not self._check(TokenType.RBRACE) and not self._is_at_end():
            expressions.append(self._parse_expression())

        self._consume(TokenType.RBRACE)
        return Block(span=self._span_from(start), expressions=tuple(expressions))

    def _parse_lambda(self) -> LambdaExpr:
        """Parse '|' name (',' name)* '|' body."""
        start = self._consume(TokenType.PIPE)
        parameters = []

        if not self._check(TokenType.PIPE):
            parameters.append(self._consume(TokenType.IDENTIFIER).value)
            while self._match(TokenType.COMMA):
                parameters.append(self._consume(TokenType.IDENTIFIER).value)

        self._consume(TokenType.PIPE)
        body = self._parse_expression()
        return LambdaExpr(
            span=SourceSpan(start.span.start, body.span.end),
            parameters=tuple(parameters),
            body=body,
        )

    def _parse_if_expr(self) -> IfExpr:
        """Parse 'if' cond 'then' expr ('else' expr)?."""
        start = self._consume(TokenType.IF)
        condition = self._parse_expression()
        self._consume(TokenType.THEN)
        then_branch = self._parse_expression()

        else_branch = None
        if self._match(TokenType.ELSE):
            else_branch = self._parse_expression()

        return IfExpr(
            span=self._span_from(start),
            condition=condition,
            then_branch=then_branch,
            else_branch=else_branch,
        )

    def _parse_while_expr(self) -> WhileExpr:
        """Parse 'while' cond body."""
        start = self._consume(TokenType.WHILE)
        condition = self._parse_expression()
        body = self._parse_expression()
        return WhileExpr(span=self._span_from(start), condition=condition, body=body)

    def _parse_match_expr(self) -> MatchExpr:
        """Parse 'match' subject '{' (pattern ':' expr (',' pattern ':' expr)* ','?)? '}'."""
        start = self._consume(TokenType.MATCH)
        subject = self._parse_expression()
        self._consume(TokenType.LBRACE)

        arms = []
        while not self._check(TokenType.RBRACE):
            arms.append(self._parse_match_arm())
            if not self._match(TokenType.COMMA):
                break

        self._consume(TokenType.RBRACE)
        return MatchExpr(span=self._span_from(start), subject=subject, arms=tuple(arms))

    def _parse_match_arm(self) -> MatchArm:
        """Parse a single 'pattern: result' arm."""
        start = self._current()
        if start.type == TokenType.IDENTIFIER and start.value == "_":
            self._advance()
            pattern = WildcardPattern(span=start.span)
        else:
            pattern = self._parse_expression()
        self._consume(TokenType.COLON)
        body = self._parse_expression()
        return MatchArm(span=self._span_from(start), pattern=pattern, body=body)

    # =========================================================================
    # Program
    # =========================================================================

    def parse_program(self) -> Tuple[Expression, ...]:
        """Parse every top-level expression up to EOF."""
        expressions = []
        try:
            while not self._is_at_end():
                expressions.append(self._parse_expression())
        except RecursionError:
            raise error_nesting_too_deep(self._current()) from None
        self._raise_lexical(self._current())
        logger.debug("parsed %d top-level expression(s)", len(expressions))
        return tuple(expressions)


def parse(tokens: List[Token]) -> Tuple[Expression, ...]:
    """
    Convenience function to parse tokens into a program.

    Args:
        tokens: List of tokens from the lexer, ending with EOF

    Returns:
        Tuple of top-level expressions, in source order

    Raises:
        LexerError: If the stream contains an ERROR token
        ParserError: If parsing fails
    """
    parser = Parser(tokens)
    return parser.parse_program()
