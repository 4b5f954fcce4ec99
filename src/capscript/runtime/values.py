"""
Runtime values for the capscript interpreter.

A Value is a kind tag plus the Python object holding its data. Containers
hold other Value objects by reference, so aliasing and in-place mutation are
plain Python reference semantics.
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from ..ast import Expression

if TYPE_CHECKING:
    from .context import Scope


class ValueKind(Enum):
    """The runtime kinds of the language."""
    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    NIL = "nil"
    LIST = "list"
    MAP = "map"
    CLOSURE = "closure"
    BUILTIN = "builtin"


@dataclass(eq=False)
class Value:
    """
    A runtime value.

    The `data` field holds the Python representation:
    float, str, bool, None, list of Value, dict of str to Value,
    Closure, or BuiltinFunction.

    Identity matters: two Value objects wrapping the same list are the same
    list only if they are the same object. Use `values_equal` for the
    language's structural equality.
    """
    kind: ValueKind
    data: Any

    def __repr__(self) -> str:
        return f"Value({self.kind.value}, {render(self, nested=True)})"

    def is_truthy(self) -> bool:
        """Check if this value is truthy in boolean context."""
        return is_truthy(self)


@dataclass(eq=False)
class Closure:
    """A lambda together with the scope it was created in."""
    parameters: Tuple[str, ...]
    body: Expression
    scope: "Scope"

    @property
    def arity(self) -> int:
        return len(self.parameters)


@dataclass(eq=False)
class BuiltinFunction:
    """
    A host-implemented function.

    The implementation is called as ``implementation(host, args, span)``
    where `host` is the running Interpreter. Bound built-ins receive their
    receiver as ``args[0]``; the arity bounds never count it.
    """
    name: str
    implementation: Callable[..., Value]
    min_arity: int = 0
    max_arity: Optional[int] = None     # None = variadic
    capability: Optional[str] = None    # Profile flag required to call it
    receiver: Optional[Value] = None
    doc: str = ""

    def bind(self, receiver: Value) -> "BuiltinFunction":
        """Return a copy bound to a receiver value."""
        return replace(self, receiver=receiver)

    def accepts(self, count: int) -> bool:
        """Check an argument count against the arity bounds."""
        if count < self.min_arity:
            return False
        return self.max_arity is None or count <= self.max_arity

    def describe_arity(self) -> str:
        if self.max_arity is None:
            return f"at least {self.min_arity}"
        if self.min_arity == self.max_arity:
            return str(self.min_arity)
        return f"{self.min_arity} to {self.max_arity}"


# Convenience constructors

def number_val(x: float) -> Value:
    """Create a number value."""
    return Value(ValueKind.NUMBER, float(x))


def string_val(s: str) -> Value:
    """Create a string value."""
    return Value(ValueKind.STRING, str(s))


def bool_val(b: bool) -> Value:
    """Create a boolean value."""
    return Value(ValueKind.BOOLEAN, bool(b))


def nil_val() -> Value:
    """Create a nil value."""
    return Value(ValueKind.NIL, None)


def list_val(items: List[Value]) -> Value:
    """Create a list value. The list object is used as-is, not copied."""
    return Value(ValueKind.LIST, items)


def map_val(entries: Dict[str, Value]) -> Value:
    """Create a map value. The dict object is used as-is, not copied."""
    return Value(ValueKind.MAP, entries)


def closure_val(closure: Closure) -> Value:
    return Value(ValueKind.CLOSURE, closure)


def builtin_val(func: BuiltinFunction) -> Value:
    return Value(ValueKind.BUILTIN, func)


def kind_name(value: Value) -> str:
    """Name of a value's kind, as used in diagnostics."""
    return value.kind.value


# Semantics

def is_truthy(value: Value) -> bool:
    """
    Truthiness: numbers are truthy when non-zero, strings, lists and maps
    when non-empty, booleans are themselves, nil is false, functions are true.
    """
    kind = value.kind
    if kind == ValueKind.NUMBER:
        return value.data != 0
    if kind in (ValueKind.STRING, ValueKind.LIST, ValueKind.MAP):
        return len(value.data) > 0
    if kind == ValueKind.BOOLEAN:
        return value.data
    if kind == ValueKind.NIL:
        return False
    return True


def values_equal(a: Value, b: Value) -> bool:
    """
    Structural equality.

    Lists compare element-wise and maps entry-wise regardless of insertion
    order. Closures are never equal, not even to themselves. Built-ins are
    equal only when they wrap the same function bound to the same receiver.

    The walk uses an explicit stack, so deep nesting cannot exhaust the host
    stack. A pair of containers already under comparison counts as equal,
    which makes self-referencing containers comparable.
    """
    pending = [(a, b)]
    compared = set()

    while pending:
        x, y = pending.pop()
        if x.kind != y.kind:
            return False
        kind = x.kind

        if kind in (ValueKind.NUMBER, ValueKind.STRING, ValueKind.BOOLEAN):
            if x.data != y.data:
                return False
        elif kind == ValueKind.NIL:
            continue
        elif kind in (ValueKind.LIST, ValueKind.MAP):
            pair = (id(x), id(y))
            if pair in compared:
                continue
            compared.add(pair)
            if kind == ValueKind.LIST:
                if len(x.data) != len(y.data):
                    return False
                pending.extend(zip(x.data, y.data))
            else:
                if x.data.keys() != y.data.keys():
                    return False
                pending.extend((x.data[k], y.data[k]) for k in x.data)
        elif kind == ValueKind.BUILTIN:
            if not (x.data.implementation is y.data.implementation
                    and x.data.receiver is y.data.receiver):
                return False
        else:
            return False  # closures

    return True


def format_number(x: float) -> str:
    """Integral numbers print without a fraction: 7 rather than 7.0."""
    if math.isfinite(x) and x.is_integer():
        return str(int(x))
    return repr(x)


def _render_atom(value: Value, nested: bool) -> str:
    kind = value.kind
    if kind == ValueKind.NUMBER:
        return format_number(value.data)
    if kind == ValueKind.STRING:
        return f"'{value.data}'" if nested else value.data
    if kind == ValueKind.BOOLEAN:
        return "true" if value.data else "false"
    if kind == ValueKind.NIL:
        return "nil"
    if kind == ValueKind.CLOSURE:
        return f"<closure |{', '.join(value.data.parameters)}|>"
    return f"<builtin {value.data.name}>"


def render(value: Value, nested: bool = False) -> str:
    """
    Render a value as text.

    Strings are raw at top level and quoted inside containers. Containers
    that contain themselves print the repeated part as '...'. Rendering is
    iterative, so any nesting depth a script can build renders.
    """
    parts: List[str] = []
    open_containers = set()  # ids of containers on the current path

    # Work items: ("value", Value, nested), ("text", str, _), ("close", id, _)
    stack: List[tuple] = [("value", value, nested)]
    while stack:
        action, item, quoted = stack.pop()
        if action == "text":
            parts.append(item)
            continue
        if action == "close":
            open_containers.discard(item)
            continue

        if item.kind not in (ValueKind.LIST, ValueKind.MAP):
            parts.append(_render_atom(item, quoted))
            continue
        if id(item) in open_containers:
            parts.append("...")
            continue
        if not item.data:
            parts.append("(,)" if item.kind == ValueKind.LIST else "(:)")
            continue

        open_containers.add(id(item))
        work = [("text", "(", False)]
        if item.kind == ValueKind.LIST:
            for i, element in enumerate(item.data):
                if i:
                    work.append(("text", ", ", False))
                work.append(("value", element, True))
            if len(item.data) == 1:
                work.append(("text", ",", False))
        else:
            for i, (key, element) in enumerate(item.data.items()):
                work.append(("text", f"{', ' if i else ''}'{key}': ", False))
                work.append(("value", element, True))
        work.append(("text", ")", False))
        work.append(("close", id(item), False))
        stack.extend(reversed(work))

    return "".join(parts)


def to_python(value: Value) -> Any:
    """
    Convert a value into plain Python data for hosts.

    Numbers stay floats, lists become lists and maps dicts. Functions are
    returned as their rendered text. A container reachable along several
    paths becomes one shared Python object, so a self-referencing value
    converts to a self-referencing list or dict.
    """
    converted: Dict[int, Any] = {}
    unfilled: List[Tuple[Value, Any]] = []

    def convert(v: Value) -> Any:
        kind = v.kind
        if kind in (ValueKind.LIST, ValueKind.MAP):
            shell = converted.get(id(v))
            if shell is None:
                shell = [] if kind == ValueKind.LIST else {}
                converted[id(v)] = shell
                unfilled.append((v, shell))
            return shell
        if kind in (ValueKind.CLOSURE, ValueKind.BUILTIN):
            return render(v)
        return v.data

    result = convert(value)
    while unfilled:
        source, shell = unfilled.pop()
        if source.kind == ValueKind.LIST:
            shell.extend([convert(item) for item in source.data])
        else:
            shell.update({k: convert(item) for k, item in source.data.items()})
    return result
