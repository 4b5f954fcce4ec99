"""
Built-in function registry for the capscript interpreter.

Holds two tables:
- the capability-gated functions of the built-in namespace (print, input,
  read_file, write_file, fetch, defer)
- the fixed property table for lists and strings, keyed by receiver kind
  and property name

Property entries are either attributes, computed on access (`xs.length`),
or methods, returned as built-ins bound to their receiver (`xs.push`).
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

import requests

from .values import (
    Value, ValueKind, BuiltinFunction,
    number_val, string_val, bool_val, nil_val, list_val, builtin_val,
    values_equal, render, kind_name,
)
from .context import Scope
from ..tokens import SourceSpan
from ..errors import (
    error_type_mismatch,
    error_no_property,
    error_host_failure,
)

if TYPE_CHECKING:
    from .interpreter import Interpreter

logger = logging.getLogger(__name__)


# Timeout for fetch() when the profile sets no time budget
DEFAULT_FETCH_TIMEOUT = 30.0


@dataclass
class Attribute:
    """A value-like property with an optional in-place setter."""
    name: str
    getter: Callable[[Value], Value]
    setter: Optional[Callable[[Value, Value, Optional[SourceSpan]], None]] = None


def _expect(value: Value, kind: ValueKind, span: Optional[SourceSpan], context: str) -> None:
    if value.kind != kind:
        raise error_type_mismatch(kind.value, kind_name(value), span, context)


def _index(value: Value, size: int) -> Optional[int]:
    """Convert a number value to an in-range index, or None."""
    x = value.data
    if x != x or not float(x).is_integer():  # nan or fractional
        return None
    i = int(x)
    if 0 <= i < size:
        return i
    return None


class BuiltinRegistry:
    """
    Registry of all built-in functions and properties.

    Functions are registered by name and exposed through a frozen Scope;
    properties are looked up by (receiver kind, property name).
    """

    def __init__(self):
        self._functions: Dict[str, BuiltinFunction] = {}
        self._attributes: Dict[Tuple[ValueKind, str], Attribute] = {}
        self._methods: Dict[Tuple[ValueKind, str], BuiltinFunction] = {}
        self._register_all()
        self.namespace = self._build_namespace()

    def get_attribute(self, kind: ValueKind, name: str) -> Optional[Attribute]:
        return self._attributes.get((kind, name))

    def get_method(self, kind: ValueKind, name: str) -> Optional[BuiltinFunction]:
        """Look up a method by receiver kind and method name."""
        return self._methods.get((kind, name))

    def register(self, func: BuiltinFunction) -> None:
        """Register a function."""
        self._functions[func.name] = func

    def register_attribute(self, kind: ValueKind, attr: Attribute) -> None:
        self._attributes[(kind, attr.name)] = attr

    def register_method(self, kind: ValueKind, func: BuiltinFunction) -> None:
        """Register a method for a specific receiver kind."""
        self._methods[(kind, func.name)] = func

    def _register_all(self) -> None:
        """Register all built-in functions and properties."""
        self._register_io_functions()
        self._register_filesystem_functions()
        self._register_network_functions()
        self._register_deferred_functions()
        self._register_list_properties()
        self._register_string_properties()

    def _build_namespace(self) -> Scope:
        scope = Scope(name="builtins")
        for func in self._functions.values():
            scope.declare(func.name, builtin_val(func))
        scope.frozen = True
        return scope

    # --- I/O ---

    def _register_io_functions(self) -> None:
        """Register print() and input()."""

        def _print(host: "Interpreter", args: List[Value], span) -> Value:
            out = host.context.stdout
            out.write(" ".join(render(a) for a in args) + "\n")
            out.flush()
            return nil_val()

        def _input(host: "Interpreter", args: List[Value], span) -> Value:
            ctx = host.context
            if args:
                ctx.stdout.write(render(args[0]))
                ctx.stdout.flush()
            line = ctx.stdin.readline()
            if not line:
                return nil_val()  # end of input
            return string_val(line.rstrip("\r\n"))

        self.register(BuiltinFunction(
            "print", _print, 0, None, capability="io",
            doc="Write the rendered values, space-separated, and a newline.",
        ))
        self.register(BuiltinFunction(
            "input", _input, 0, 1, capability="io",
            doc="Read one line of input; nil at end of input.",
        ))

    # --- Filesystem ---

    def _register_filesystem_functions(self) -> None:
        """Register read_file() and write_file()."""

        def _read_file(host: "Interpreter", args: List[Value], span) -> Value:
            path = args[0]
            _expect(path, ValueKind.STRING, span, "read_file path")
            try:
                with open(path.data, "r", encoding="utf-8") as fp:
                    return string_val(fp.read())
            except (OSError, UnicodeDecodeError) as e:
                raise error_host_failure("read_file", str(e), span) from e

        def _write_file(host: "Interpreter", args: List[Value], span) -> Value:
            path, text = args
            _expect(path, ValueKind.STRING, span, "write_file path")
            _expect(text, ValueKind.STRING, span, "write_file text")
            try:
                with open(path.data, "w", encoding="utf-8") as fp:
                    written = fp.write(text.data)
            except OSError as e:
                raise error_host_failure("write_file", str(e), span) from e
            return number_val(written)

        self.register(BuiltinFunction(
            "read_file", _read_file, 1, 1, capability="filesystem",
            doc="Return the UTF-8 text of a file.",
        ))
        self.register(BuiltinFunction(
            "write_file", _write_file, 2, 2, capability="filesystem",
            doc="Write text to a file, returning the number of characters written.",
        ))

    # --- Network ---

    def _register_network_functions(self) -> None:
        """Register fetch()."""

        def _fetch(host: "Interpreter", args: List[Value], span) -> Value:
            url = args[0]
            _expect(url, ValueKind.STRING, span, "fetch url")
            remaining = host.context.remaining_ms()
            timeout = DEFAULT_FETCH_TIMEOUT if remaining is None else max(remaining / 1000.0, 0.001)
            logger.debug("fetch %s (timeout %.3fs)", url.data, timeout)
            try:
                response = requests.get(url.data, timeout=timeout)
                response.raise_for_status()
            except requests.RequestException as e:
                raise error_host_failure("fetch", str(e), span) from e
            return string_val(response.text)

        self.register(BuiltinFunction(
            "fetch", _fetch, 1, 1, capability="network",
            doc="HTTP GET a URL and return the response body as text.",
        ))

    # --- Deferred execution ---

    def _register_deferred_functions(self) -> None:
        """Register defer()."""

        def _defer(host: "Interpreter", args: List[Value], span) -> Value:
            fn = args[0]
            if fn.kind not in (ValueKind.CLOSURE, ValueKind.BUILTIN):
                raise error_type_mismatch("function", kind_name(fn), span, "defer")
            host.context.deferred.append(fn)
            return nil_val()

        self.register(BuiltinFunction(
            "defer", _defer, 1, 1, capability="deferred_execution",
            doc="Queue a zero-argument function to run after the program.",
        ))

    # --- List properties ---

    def _register_list_properties(self) -> None:
        """Register list attributes and methods."""
        LIST = ValueKind.LIST

        def _first(xs: Value) -> Value:
            return xs.data[0] if xs.data else nil_val()

        def _last(xs: Value) -> Value:
            return xs.data[-1] if xs.data else nil_val()

        def _set_end(position: int, name: str):
            def setter(xs: Value, value: Value, span) -> None:
                if not xs.data:
                    raise error_type_mismatch("non-empty list", "empty list", span, f"assign '{name}'")
                xs.data[position] = value
            return setter

        self.register_attribute(LIST, Attribute("length", lambda xs: number_val(len(xs.data))))
        self.register_attribute(LIST, Attribute("first", _first, _set_end(0, "first")))
        self.register_attribute(LIST, Attribute("last", _last, _set_end(-1, "last")))

        def _push(host, args: List[Value], span) -> Value:
            xs, item = args
            xs.data.append(item)
            host.context.check_heap(span, xs)
            return xs

        def _pop(host, args: List[Value], span) -> Value:
            xs = args[0]
            return xs.data.pop() if xs.data else nil_val()

        def _get(host, args: List[Value], span) -> Value:
            xs, index = args
            _expect(index, ValueKind.NUMBER, span, "list get index")
            i = _index(index, len(xs.data))
            return xs.data[i] if i is not None else nil_val()

        def _has(host, args: List[Value], span) -> Value:
            xs, item = args
            return bool_val(any(values_equal(x, item) for x in xs.data))

        def _each(host, args: List[Value], span) -> Value:
            xs, fn = args
            for item in list(xs.data):
                host.call_value(fn, [item], span)
            return xs

        def _map(host, args: List[Value], span) -> Value:
            xs, fn = args
            result = list_val([])
            for item in list(xs.data):
                result.data.append(host.call_value(fn, [item], span))
                host.context.check_heap(span, xs, result)
            return result

        self.register_method(LIST, BuiltinFunction("push", _push, 1, 1, doc="Append a value; returns the list."))
        self.register_method(LIST, BuiltinFunction("pop", _pop, 0, 0, doc="Remove and return the last value."))
        self.register_method(LIST, BuiltinFunction("get", _get, 1, 1, doc="Value at an index, or nil."))
        self.register_method(LIST, BuiltinFunction("has", _has, 1, 1, doc="Whether an equal value is present."))
        self.register_method(LIST, BuiltinFunction("each", _each, 1, 1, doc="Call a function on each value."))
        self.register_method(LIST, BuiltinFunction("map", _map, 1, 1, doc="New list of function results."))

    # --- String properties ---

    def _register_string_properties(self) -> None:
        """Register string attributes and methods."""
        STRING = ValueKind.STRING

        self.register_attribute(STRING, Attribute("length", lambda s: number_val(len(s.data))))

        def _upper(host, args: List[Value], span) -> Value:
            return string_val(args[0].data.upper())

        def _lower(host, args: List[Value], span) -> Value:
            return string_val(args[0].data.lower())

        def _has(host, args: List[Value], span) -> Value:
            s, part = args
            _expect(part, STRING, span, "string has")
            return bool_val(part.data in s.data)

        def _split(host, args: List[Value], span) -> Value:
            s, sep = args
            _expect(sep, STRING, span, "string split separator")
            if sep.data == "":
                parts = list(s.data)
            else:
                parts = s.data.split(sep.data)
            result = list_val([string_val(p) for p in parts])
            host.context.check_heap(span, result)
            return result

        def _get(host, args: List[Value], span) -> Value:
            s, index = args
            _expect(index, ValueKind.NUMBER, span, "string get index")
            i = _index(index, len(s.data))
            return string_val(s.data[i]) if i is not None else nil_val()

        self.register_method(STRING, BuiltinFunction("upper", _upper, 0, 0))
        self.register_method(STRING, BuiltinFunction("lower", _lower, 0, 0))
        self.register_method(STRING, BuiltinFunction("has", _has, 1, 1, doc="Substring test."))
        self.register_method(STRING, BuiltinFunction("split", _split, 1, 1))
        self.register_method(STRING, BuiltinFunction("get", _get, 1, 1, doc="Character at an index, or nil."))


# Global singleton registry
_registry: Optional[BuiltinRegistry] = None


def get_builtin_registry() -> BuiltinRegistry:
    """Get the global built-in function registry."""
    global _registry
    if _registry is None:
        _registry = BuiltinRegistry()
    return _registry


def builtin_scope() -> Scope:
    """The frozen scope holding every built-in function."""
    return get_builtin_registry().namespace


def get_property(receiver: Value, name: str, span: Optional[SourceSpan]) -> Value:
    """
    Resolve `receiver.name`.

    Maps look the key up (absent keys are nil). Lists and strings use the
    property table. Anything else raises TypeMismatchError.
    """
    if receiver.kind == ValueKind.MAP:
        return receiver.data.get(name, nil_val())

    registry = get_builtin_registry()
    attr = registry.get_attribute(receiver.kind, name)
    if attr is not None:
        return attr.getter(receiver)
    method = registry.get_method(receiver.kind, name)
    if method is not None:
        return builtin_val(method.bind(receiver))
    raise error_no_property(kind_name(receiver), name, span)


def set_property(receiver: Value, name: str, value: Value, span: Optional[SourceSpan]) -> None:
    """
    Perform `receiver.name := value` in place.

    Maps set the key; lists support replacing `first` and `last`.
    """
    if receiver.kind == ValueKind.MAP:
        receiver.data[name] = value
        return

    attr = get_builtin_registry().get_attribute(receiver.kind, name)
    if attr is None or attr.setter is None:
        raise error_type_mismatch(
            "map or list end", kind_name(receiver), span, f"assign property '{name}'"
        )
    attr.setter(receiver, value, span)
