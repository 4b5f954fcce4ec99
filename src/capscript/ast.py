"""
Abstract Syntax Tree (AST) node definitions for capscript.

Every construct in the language is an expression. Nodes are frozen
dataclasses; child sequences are tuples, so a parsed program is an immutable
tree with no back-references.
"""

from dataclasses import dataclass, fields
from typing import Optional, Tuple, Union
from .tokens import SourceSpan, TokenType


# =============================================================================
# Base Classes
# =============================================================================

@dataclass(frozen=True)
class AstNode:
    """Base class for all AST nodes."""
    span: SourceSpan  # Source location for error reporting


@dataclass(frozen=True)
class Expression(AstNode):
    """Base class for all expressions."""
    pass


# =============================================================================
# Atoms
# =============================================================================

@dataclass(frozen=True)
class Literal(Expression):
    """A literal value: number (float), string, boolean or nil (None)."""
    value: Union[float, str, bool, None]
    literal_type: TokenType  # NUMBER, STRING, TRUE, FALSE, NIL


@dataclass(frozen=True)
class Identifier(Expression):
    """A variable reference."""
    name: str


@dataclass(frozen=True)
class ListLiteral(Expression):
    """A list literal, e.g. (1, 2, 3) or (,)."""
    elements: Tuple[Expression, ...]


@dataclass(frozen=True)
class MapLiteral(Expression):
    """A map literal, e.g. ('a': 1, 'b': 2) or (:).

    Keys are arbitrary expressions; they must evaluate to strings.
    """
    entries: Tuple[Tuple[Expression, Expression], ...]


@dataclass(frozen=True)
class LambdaExpr(Expression):
    """An anonymous function, e.g. |x, y| { x + y }."""
    parameters: Tuple[str, ...]
    body: Expression


@dataclass(frozen=True)
class Block(Expression):
    """A braced sequence of expressions; its value is the last one (or nil)."""
    expressions: Tuple[Expression, ...]


# =============================================================================
# Control flow
# =============================================================================

@dataclass(frozen=True)
class IfExpr(Expression):
    """if cond then a else b. Without else the value is nil when cond is falsy."""
    condition: Expression
    then_branch: Expression
    else_branch: Optional[Expression] = None


@dataclass(frozen=True)
class WhileExpr(Expression):
    """while cond body. Value is the last body value, nil if it never ran."""
    condition: Expression
    body: Expression


@dataclass(frozen=True)
class WildcardPattern(Expression):
    """The '_' match pattern, which accepts any subject."""
    pass


@dataclass(frozen=True)
class MatchArm(AstNode):
    """A single arm of a match expression."""
    pattern: Expression
    body: Expression


@dataclass(frozen=True)
class MatchExpr(Expression):
    """match subject { pattern: result, ... }."""
    subject: Expression
    arms: Tuple[MatchArm, ...]


# =============================================================================
# Operators and postfix forms
# =============================================================================

@dataclass(frozen=True)
class BinaryOp(Expression):
    """A binary operation (e.g., a + b, x and y)."""
    left: Expression
    operator: TokenType  # Includes AND, OR for logical operators
    right: Expression


@dataclass(frozen=True)
class UnaryOp(Expression):
    """A unary operation (e.g., not x, -n)."""
    operator: TokenType
    operand: Expression


@dataclass(frozen=True)
class Call(Expression):
    """A call, e.g. f(1, 2), f(1) |x| x, or f |x| x."""
    callee: Expression
    arguments: Tuple[Expression, ...]


@dataclass(frozen=True)
class PropertyAccess(Expression):
    """Property access (e.g., config.name, items.length)."""
    object: Expression
    name: str


@dataclass(frozen=True)
class Assignment(Expression):
    """name := value or obj.prop := value."""
    target: Union[Identifier, PropertyAccess]
    value: Expression


# =============================================================================
# Debug formatting
# =============================================================================

def format_ast(node: AstNode, indent: int = 0) -> str:
    """Render an AST node as an indented tree for debugging."""
    pad = "  " * indent
    lines = [f"{pad}{node.__class__.__name__}"]
    for f in fields(node):
        if f.name == "span":
            continue
        value = getattr(node, f.name)
        if isinstance(value, AstNode):
            lines.append(f"{pad}  {f.name}:")
            lines.append(format_ast(value, indent + 2))
        elif isinstance(value, tuple):
            lines.append(f"{pad}  {f.name}: [")
            for item in value:
                if isinstance(item, AstNode):
                    lines.append(format_ast(item, indent + 2))
                elif isinstance(item, tuple):
                    for part in item:
                        if isinstance(part, AstNode):
                            lines.append(format_ast(part, indent + 2))
                        else:
                            lines.append(f"{pad}    {part!r}")
                else:
                    lines.append(f"{pad}    {item!r}")
            lines.append(f"{pad}  ]")
        elif isinstance(value, TokenType):
            lines.append(f"{pad}  {f.name}: {value.name}")
        else:
            lines.append(f"{pad}  {f.name}: {value!r}")
    return "\n".join(lines)
