"""
Tree-walking interpreter for capscript.

Evaluates AST nodes to produce values, enforcing the sandbox profile.
"""

import logging
import math
import sys
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, TextIO

from .values import (
    Value, ValueKind, Closure,
    number_val, string_val, bool_val, nil_val, list_val, map_val, closure_val,
    is_truthy, values_equal, render, kind_name, to_python,
)
from .context import ExecutionContext, Scope
from .builtins import builtin_scope, get_property, set_property

from ..ast import (
    Expression, Literal, Identifier, ListLiteral, MapLiteral, LambdaExpr,
    Block, IfExpr, WhileExpr, MatchExpr, WildcardPattern,
    BinaryOp, UnaryOp, Call, PropertyAccess, Assignment,
)
from ..errors import (
    DslError,
    DiagnosticCollector,
    error_undefined_variable,
    error_type_mismatch,
    error_arity,
    error_capability_denied,
    error_host_stack_exhausted,
    error_no_match,
)
from ..profile import Profile
from ..tokens import SourceSpan, TokenType

logger = logging.getLogger(__name__)


ARITHMETIC_OPERATORS = {
    TokenType.PLUS: "+",
    TokenType.MINUS: "-",
    TokenType.STAR: "*",
    TokenType.SLASH: "/",
    TokenType.PERCENT: "%",
}

ORDERING_OPERATORS = {
    TokenType.LT: "<",
    TokenType.GT: ">",
    TokenType.LE: "<=",
    TokenType.GE: ">=",
}


def _divide(a: float, b: float) -> float:
    """IEEE division: x/0 is +-inf, 0/0 is nan."""
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _remainder(a: float, b: float) -> float:
    """C-style fmod, with nan where math.fmod would raise."""
    if b == 0 or math.isinf(a):
        return math.nan
    return math.fmod(a, b)


@dataclass
class ExecutionResult:
    """Result of compiling and running a program."""
    success: bool
    value: Optional[Value] = None
    error: Optional[DslError] = None
    diagnostics: DiagnosticCollector = field(default_factory=DiagnosticCollector)

    @property
    def error_message(self) -> Optional[str]:
        """Get the formatted error, if any."""
        if self.error is None:
            return None
        return str(self.error)

    @property
    def python_value(self) -> Any:
        """Get the result as plain Python data."""
        if self.value is None:
            return None
        return to_python(self.value)


class Interpreter:
    """
    Tree-walking interpreter for capscript.

    Evaluates AST nodes by dispatching to type-specific methods. The root
    scope persists across calls to `evaluate`, so a host can feed a program
    in several pieces. Every call gets a fresh ExecutionContext: budgets are
    per run, and an error in one run leaves the interpreter usable.
    """

    def __init__(
        self,
        profile: Optional[Profile] = None,
        stdout: Optional[TextIO] = None,
        stdin: Optional[TextIO] = None,
    ):
        """
        Initialize the interpreter.

        Args:
            profile: Sandbox profile; defaults to no capabilities and no budgets
            stdout: Stream for print(); defaults to sys.stdout at run time
            stdin: Stream for input(); defaults to sys.stdin at run time
        """
        self.profile = profile if profile is not None else Profile()
        self.stdout = stdout
        self.stdin = stdin
        self.globals = Scope(parent=builtin_scope(), name="global")
        self.context: Optional[ExecutionContext] = None

    def evaluate(self, program: Sequence[Expression]) -> Value:
        """
        Evaluate a program and return the value of its last expression.

        Callables queued with defer() run after the last expression, under
        the same budgets; the program's value is unchanged by them.

        Raises:
            EvaluationError: On any runtime error or budget breach
        """
        ctx = ExecutionContext(
            profile=self.profile,
            current_scope=self.globals,
            stdout=self.stdout if self.stdout is not None else sys.stdout,
            stdin=self.stdin if self.stdin is not None else sys.stdin,
        )
        self.context = ctx
        logger.debug("run start: %d expression(s), profile=%s", len(program), self.profile)

        try:
            result = nil_val()
            for expr in program:
                result = self._evaluate(expr)
            self._run_deferred(ctx)
        except RecursionError:
            logger.info("host recursion limit reached at call depth %d", ctx.peak_depth)
            raise error_host_stack_exhausted(
                ctx.peak_depth, self.profile.max_stack_depth, ctx.last_span
            ) from None
        finally:
            self.context = None

        logger.debug("run finished in %.1f ms", ctx.elapsed_ms())
        return result

    def _run_deferred(self, ctx: ExecutionContext) -> None:
        """Drain the defer() queue in FIFO order."""
        while ctx.deferred:
            fn = ctx.deferred.pop(0)
            logger.debug("running deferred %s", render(fn))
            self.call_value(fn, [], ctx.last_span)

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _evaluate(self, expr: Expression) -> Value:
        """Evaluate an expression."""
        self.context.checkpoint(expr.span)

        if isinstance(expr, Literal):
            return self._eval_literal(expr)
        elif isinstance(expr, Identifier):
            return self._eval_identifier(expr)
        elif isinstance(expr, BinaryOp):
            return self._eval_binary_op(expr)
        elif isinstance(expr, UnaryOp):
            return self._eval_unary_op(expr)
        elif isinstance(expr, Call):
            return self._eval_call(expr)
        elif isinstance(expr, PropertyAccess):
            return self._eval_property_access(expr)
        elif isinstance(expr, Assignment):
            return self._eval_assignment(expr)
        elif isinstance(expr, Block):
            return self._eval_block(expr)
        elif isinstance(expr, IfExpr):
            return self._eval_if_expr(expr)
        elif isinstance(expr, WhileExpr):
            return self._eval_while_expr(expr)
        elif isinstance(expr, MatchExpr):
            return self._eval_match_expr(expr)
        elif isinstance(expr, LambdaExpr):
            return self._eval_lambda(expr)
        elif isinstance(expr, ListLiteral):
            return self._eval_list_literal(expr)
        elif isinstance(expr, MapLiteral):
            return self._eval_map_literal(expr)
        else:
            raise RuntimeError(f"Unknown expression type: {type(expr).__name__}")

    # =========================================================================
    # Atoms
    # =========================================================================

    def _eval_literal(self, expr: Literal) -> Value:
        """Evaluate a literal."""
        if expr.literal_type == TokenType.NUMBER:
            return number_val(expr.value)
        elif expr.literal_type == TokenType.STRING:
            return string_val(expr.value)
        elif expr.literal_type in (TokenType.TRUE, TokenType.FALSE):
            return bool_val(expr.value)
        return nil_val()

    def _eval_identifier(self, expr: Identifier) -> Value:
        """Look up a variable."""
        cell = self.context.current_scope.lookup(expr.name)
        if cell is None:
            raise error_undefined_variable(expr.name, expr.span)
        return cell.value

    def _eval_list_literal(self, expr: ListLiteral) -> Value:
        """Evaluate a list literal, left to right."""
        value = list_val([self._evaluate(e) for e in expr.elements])
        self.context.check_heap(expr.span, value)
        return value

    def _eval_map_literal(self, expr: MapLiteral) -> Value:
        """Evaluate a map literal. A repeated key keeps its first position."""
        entries = {}
        for key_expr, value_expr in expr.entries:
            key = self._evaluate(key_expr)
            if key.kind != ValueKind.STRING:
                raise error_type_mismatch("string", kind_name(key), key_expr.span, "map key")
            entries[key.data] = self._evaluate(value_expr)
        value = map_val(entries)
        self.context.check_heap(expr.span, value)
        return value

    def _eval_lambda(self, expr: LambdaExpr) -> Value:
        """Create a closure capturing the current scope."""
        return closure_val(Closure(expr.parameters, expr.body, self.context.current_scope))

    # =========================================================================
    # Control flow
    # =========================================================================

    def _eval_block(self, expr: Block) -> Value:
        """Evaluate a block in a new scope; its value is the last expression's."""
        result = nil_val()
        with self.context.new_scope("block"):
            for e in expr.expressions:
                result = self._evaluate(e)
        return result

    def _eval_if_expr(self, expr: IfExpr) -> Value:
        """Evaluate a conditional."""
        condition = self._evaluate(expr.condition)
        if is_truthy(condition):
            return self._evaluate(expr.then_branch)
        if expr.else_branch is not None:
            return self._evaluate(expr.else_branch)
        return nil_val()

    def _eval_while_expr(self, expr: WhileExpr) -> Value:
        """Evaluate a loop; its value is the last body value, nil if none."""
        result = nil_val()
        while is_truthy(self._evaluate(expr.condition)):
            result = self._evaluate(expr.body)
            self.context.check_heap(expr.span, result)
        return result

    def _eval_match_expr(self, expr: MatchExpr) -> Value:
        """Select the first arm whose pattern equals the subject."""
        subject = self._evaluate(expr.subject)
        for arm in expr.arms:
            if isinstance(arm.pattern, WildcardPattern):
                return self._evaluate(arm.body)
            pattern = self._evaluate(arm.pattern)
            if values_equal(subject, pattern):
                return self._evaluate(arm.body)
        raise error_no_match(render(subject, nested=True), expr.span)

    # =========================================================================
    # Operators
    # =========================================================================

    def _eval_binary_op(self, expr: BinaryOp) -> Value:
        """Evaluate a binary operation."""
        op = expr.operator

        # Short-circuit operators return the deciding operand
        if op == TokenType.AND:
            left = self._evaluate(expr.left)
            if not is_truthy(left):
                return left
            return self._evaluate(expr.right)
        if op == TokenType.OR:
            left = self._evaluate(expr.left)
            if is_truthy(left):
                return left
            return self._evaluate(expr.right)

        left = self._evaluate(expr.left)
        right = self._evaluate(expr.right)

        if op == TokenType.EQ:
            return bool_val(values_equal(left, right))
        if op == TokenType.NE:
            return bool_val(not values_equal(left, right))

        if op in ORDERING_OPERATORS:
            symbol = ORDERING_OPERATORS[op]
            comparable = left.kind == right.kind and left.kind in (ValueKind.NUMBER, ValueKind.STRING)
            if not comparable:
                raise error_type_mismatch(
                    "two numbers or two strings",
                    f"{kind_name(left)} and {kind_name(right)}",
                    expr.span, f"'{symbol}'",
                )
            a, b = left.data, right.data
            if op == TokenType.LT:
                return bool_val(a < b)
            if op == TokenType.GT:
                return bool_val(a > b)
            if op == TokenType.LE:
                return bool_val(a <= b)
            return bool_val(a >= b)

        symbol = ARITHMETIC_OPERATORS.get(op)
        if symbol is None:
            raise RuntimeError(f"Unknown binary operator: {op}")
        for operand, side in ((left, expr.left), (right, expr.right)):
            if operand.kind != ValueKind.NUMBER:
                raise error_type_mismatch("number", kind_name(operand), side.span, f"'{symbol}'")

        a, b = left.data, right.data
        if op == TokenType.PLUS:
            return number_val(a + b)
        if op == TokenType.MINUS:
            return number_val(a - b)
        if op == TokenType.STAR:
            return number_val(a * b)
        if op == TokenType.SLASH:
            return number_val(_divide(a, b))
        return number_val(_remainder(a, b))

    def _eval_unary_op(self, expr: UnaryOp) -> Value:
        """Evaluate a unary operation."""
        operand = self._evaluate(expr.operand)

        if expr.operator == TokenType.NOT:
            return bool_val(not is_truthy(operand))

        if operand.kind != ValueKind.NUMBER:
            raise error_type_mismatch("number", kind_name(operand), expr.operand.span, "unary '-'")
        return number_val(-operand.data)

    # =========================================================================
    # Calls, properties, assignment
    # =========================================================================

    def _eval_call(self, expr: Call) -> Value:
        """Evaluate callee, then arguments left to right, then call."""
        callee = self._evaluate(expr.callee)
        args = [self._evaluate(arg) for arg in expr.arguments]
        return self.call_value(callee, args, expr.span)

    def call_value(self, callee: Value, args: List[Value], span: Optional[SourceSpan]) -> Value:
        """
        Call a closure or built-in with already-evaluated arguments.

        Also used by built-ins that take function arguments.
        """
        ctx = self.context

        if callee.kind == ValueKind.CLOSURE:
            closure = callee.data
            if len(args) != closure.arity:
                raise error_arity(render(callee), str(closure.arity), len(args), span)
            scope = Scope(parent=closure.scope, name="closure")
            for name, arg in zip(closure.parameters, args):
                scope.declare(name, arg)
            with ctx.call_frame(span, scope):
                ctx.check_heap(span)
                return self._evaluate(closure.body)

        if callee.kind == ValueKind.BUILTIN:
            func = callee.data
            if not func.accepts(len(args)):
                raise error_arity(func.name, func.describe_arity(), len(args), span)
            if func.capability is not None and not ctx.profile.allows(func.capability):
                logger.info("capability '%s' denied for %s()", func.capability, func.name)
                raise error_capability_denied(func.capability, func.name, span)
            call_args = args if func.receiver is None else [func.receiver, *args]
            with ctx.call_frame(span):
                return func.implementation(self, call_args, span)

        raise error_type_mismatch("function", kind_name(callee), span, "call")

    def _eval_property_access(self, expr: PropertyAccess) -> Value:
        """Evaluate `object.name`."""
        receiver = self._evaluate(expr.object)
        return get_property(receiver, expr.name, expr.span)

    def _eval_assignment(self, expr: Assignment) -> Value:
        """Evaluate `name := value` or `object.name := value`."""
        target = expr.target
        ctx = self.context

        if isinstance(target, Identifier):
            value = self._evaluate(expr.value)
            ctx.current_scope.declare(target.name, value)
            ctx.check_heap(expr.span)
            return value

        receiver = self._evaluate(target.object)
        value = self._evaluate(expr.value)
        set_property(receiver, target.name, value, expr.span)
        ctx.check_heap(expr.span, receiver)
        return value


# Convenience functions

def evaluate(program: Sequence[Expression], profile: Optional[Profile] = None) -> Value:
    """
    Evaluate a parsed program under a profile.

    This is a convenience wrapper around Interpreter.evaluate().
    """
    interpreter = Interpreter(profile)
    return interpreter.evaluate(program)


def compile_and_run(
    source: str,
    profile: Optional[Profile] = None,
    filename: Optional[str] = None,
    interpreter: Optional[Interpreter] = None,
) -> ExecutionResult:
    """
    High-level API to lex, parse and evaluate source text in one call.

        from capscript import compile_and_run, Profile

        result = compile_and_run("x := 2  x * 21")
        if result.success:
            print(result.python_value)
        else:
            print(result.error_message)

    Args:
        source: Program text
        profile: Sandbox profile (ignored when `interpreter` is given)
        filename: Optional filename for diagnostics
        interpreter: Existing interpreter to run in, keeping its root scope

    Returns:
        ExecutionResult; script errors are reported, never raised
    """
    from ..lexer import Lexer
    from ..parser import parse

    diagnostics = DiagnosticCollector()
    source_lines = source.splitlines()

    lexer = Lexer(source, filename)
    tokens = lexer.tokenize()
    if lexer.diagnostics.has_errors:
        for error in lexer.diagnostics.errors:
            diagnostics.add_error(error)
        return ExecutionResult(success=False, error=lexer.diagnostics.errors[0],
                               diagnostics=diagnostics)

    if interpreter is None:
        interpreter = Interpreter(profile)

    try:
        program = parse(tokens)
        value = interpreter.evaluate(program)
    except DslError as e:
        e.attach_source(source_lines)
        diagnostics.add_error(e)
        logger.debug("run failed with %s: %s", e.code, e.diagnostic.message)
        return ExecutionResult(success=False, error=e, diagnostics=diagnostics)

    return ExecutionResult(success=True, value=value, diagnostics=diagnostics)
