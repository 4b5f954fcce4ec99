"""
capscript - an embeddable, sandboxed expression language.

This module provides:
- Lexer: Tokenizes source text
- Parser: Builds an expression AST from tokens
- Interpreter: Evaluates programs under a Profile of budgets and capabilities

Usage:
    from capscript import tokenize, parse, evaluate, Profile

    program = parse(tokenize('''
        fib := |n| if n < 2 then n else fib(n - 1) + fib(n - 2)
        fib(10)
    '''))
    value = evaluate(program, Profile(max_stack_depth=50))
    print(value.data)   # 55.0

    # Or in one call, with errors returned instead of raised
    from capscript import compile_and_run
    result = compile_and_run("print('hi')", Profile(capabilities={'io': True}))
    if not result.success:
        print(result.diagnostics.format_all())
"""

import logging

from .tokens import (
    Token,
    TokenType,
    SourceLocation,
    SourceSpan,
    KEYWORDS,
)

from .lexer import (
    Lexer,
    tokenize,
)

from .parser import (
    Parser,
    parse,
)

from .ast import (
    AstNode,
    Expression,
    Literal,
    Identifier,
    ListLiteral,
    MapLiteral,
    LambdaExpr,
    Block,
    IfExpr,
    WhileExpr,
    WildcardPattern,
    MatchArm,
    MatchExpr,
    BinaryOp,
    UnaryOp,
    Call,
    PropertyAccess,
    Assignment,
    format_ast,
)

from .errors import (
    ErrorSeverity,
    Diagnostic,
    DiagnosticCollector,
    DslError,
    ProfileError,
    LexerError,
    UnexpectedCharacterError,
    UnterminatedStringError,
    InvalidNumberError,
    ParserError,
    UnexpectedTokenError,
    ExpectedTokenError,
    InvalidAssignmentTargetError,
    ChainedComparisonError,
    EvaluationError,
    UndefinedVariableError,
    TypeMismatchError,
    ArityError,
    CapabilityDeniedError,
    BudgetExceededError,
    StackOverflowError,
    TimeLimitExceededError,
    HeapLimitExceededError,
    MatchError,
    HostError,
)

from .profile import (
    CAPABILITY_NAMES,
    Capabilities,
    Profile,
    load_profile,
    profile_from_mapping,
)

from .runtime import (
    Value,
    ValueKind,
    Scope,
    Interpreter,
    ExecutionResult,
    evaluate,
    compile_and_run,
    render,
    values_equal,
    is_truthy,
    to_python,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Tokens
    'Token',
    'TokenType',
    'SourceLocation',
    'SourceSpan',
    'KEYWORDS',

    # Lexer / parser
    'Lexer',
    'tokenize',
    'Parser',
    'parse',

    # AST
    'AstNode',
    'Expression',
    'Literal',
    'Identifier',
    'ListLiteral',
    'MapLiteral',
    'LambdaExpr',
    'Block',
    'IfExpr',
    'WhileExpr',
    'WildcardPattern',
    'MatchArm',
    'MatchExpr',
    'BinaryOp',
    'UnaryOp',
    'Call',
    'PropertyAccess',
    'Assignment',
    'format_ast',

    # Errors
    'ErrorSeverity',
    'Diagnostic',
    'DiagnosticCollector',
    'DslError',
    'ProfileError',
    'LexerError',
    'UnexpectedCharacterError',
    'UnterminatedStringError',
    'InvalidNumberError',
    'ParserError',
    'UnexpectedTokenError',
    'ExpectedTokenError',
    'InvalidAssignmentTargetError',
    'ChainedComparisonError',
    'EvaluationError',
    'UndefinedVariableError',
    'TypeMismatchError',
    'ArityError',
    'CapabilityDeniedError',
    'BudgetExceededError',
    'StackOverflowError',
    'TimeLimitExceededError',
    'HeapLimitExceededError',
    'MatchError',
    'HostError',

    # Profile
    'CAPABILITY_NAMES',
    'Capabilities',
    'Profile',
    'load_profile',
    'profile_from_mapping',

    # Runtime
    'Value',
    'ValueKind',
    'Scope',
    'Interpreter',
    'ExecutionResult',
    'evaluate',
    'compile_and_run',
    'render',
    'values_equal',
    'is_truthy',
    'to_python',
]

__version__ = '0.1.0'
