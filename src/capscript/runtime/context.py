"""
Execution context for the capscript interpreter.

Manages variable scopes and enforces the profile's budgets.
"""

import logging
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, TextIO

from .values import Value, ValueKind
from ..profile import Profile
from ..tokens import SourceSpan
from ..errors import error_stack_overflow, error_time_limit, error_heap_limit

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Cell:
    """Mutable holder for one variable's value."""
    value: Value


@dataclass(eq=False)
class Scope:
    """
    A single scope containing variable bindings.

    Scopes form a chain via the `parent` field for lexical scoping. Each name
    owns one Cell for the scope's lifetime; rebinding a name writes into
    that cell, so closures sharing the scope observe the new value.
    """
    cells: Dict[str, Cell] = field(default_factory=dict)
    parent: Optional["Scope"] = None
    name: str = "anonymous"  # For debugging
    frozen: bool = False

    def lookup(self, name: str) -> Optional[Cell]:
        """Find the cell for a name in this scope or its parents."""
        scope = self
        while scope is not None:
            cell = scope.cells.get(name)
            if cell is not None:
                return cell
            scope = scope.parent
        return None

    def get(self, name: str) -> Optional[Value]:
        """Look up a variable's value in this scope or parent scopes."""
        cell = self.lookup(name)
        return cell.value if cell is not None else None

    def declare(self, name: str, value: Value) -> Cell:
        """Bind a name in this scope, reusing its cell if already bound here."""
        if self.frozen:
            raise RuntimeError(f"cannot bind '{name}' in frozen scope '{self.name}'")
        cell = self.cells.get(name)
        if cell is None:
            cell = Cell(value)
            self.cells[name] = cell
        else:
            cell.value = value
        return cell


def _default_stdout() -> TextIO:
    return sys.stdout


def _default_stdin() -> TextIO:
    return sys.stdin


@dataclass
class ExecutionContext:
    """
    State of one evaluation run.

    Tracks:
    - The current scope and the scopes of suspended callers
    - Call depth and start time, checked against the profile
    - Callables queued with defer()
    - The streams used by print() and input()
    """
    profile: Profile = field(default_factory=Profile)

    # Scope chain
    current_scope: Scope = field(default_factory=lambda: Scope(name="global"))
    frames: List[Scope] = field(default_factory=list)

    # Budgets
    depth: int = 0
    peak_depth: int = 0
    started_at: float = field(default_factory=time.monotonic)

    # Effects
    deferred: List[Value] = field(default_factory=list)
    stdout: TextIO = field(default_factory=_default_stdout)
    stdin: TextIO = field(default_factory=_default_stdin)

    # Last node span seen by a checkpoint, for errors raised without one
    last_span: Optional[SourceSpan] = None

    @contextmanager
    def new_scope(self, name: str = "block"):
        """
        Context manager to create a new nested scope.

        Usage:
            with ctx.new_scope("block"):
                # names bound here are local to this scope
                ctx.current_scope.declare("i", number_val(0))
        """
        old_scope = self.current_scope
        self.current_scope = Scope(parent=old_scope, name=name)
        try:
            yield self.current_scope
        finally:
            self.current_scope = old_scope

    @contextmanager
    def call_frame(self, span: Optional[SourceSpan], scope: Optional[Scope] = None):
        """
        Context manager for one call.

        Increments the call depth and, for closures, makes `scope` current
        while keeping the caller's scope reachable for heap accounting.
        """
        self.depth += 1
        self.peak_depth = max(self.peak_depth, self.depth)
        old_scope = self.current_scope
        self.frames.append(old_scope)
        if scope is not None:
            self.current_scope = scope
        try:
            self.check_depth(span)
            yield self.current_scope
        finally:
            self.current_scope = old_scope
            self.frames.pop()
            self.depth -= 1

    # =========================================================================
    # Budget checks
    # =========================================================================

    def checkpoint(self, span: Optional[SourceSpan]) -> None:
        """Per-node check of call depth and elapsed time."""
        self.last_span = span
        self.check_depth(span)
        self.check_time(span)

    def check_depth(self, span: Optional[SourceSpan]) -> None:
        limit = self.profile.max_stack_depth
        if limit is not None and self.depth > limit:
            logger.info("stack depth budget exceeded: %d > %d", self.depth, limit)
            raise error_stack_overflow(limit, self.depth, span)

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000.0

    def remaining_ms(self) -> Optional[float]:
        """Milliseconds left in the time budget, or None if unlimited."""
        limit = self.profile.max_time_ms
        if limit is None:
            return None
        return max(0.0, limit - self.elapsed_ms())

    def check_time(self, span: Optional[SourceSpan]) -> None:
        limit = self.profile.max_time_ms
        if limit is None:
            return
        elapsed = self.elapsed_ms()
        if elapsed > limit:
            logger.info("time budget exceeded: %.1f ms > %d ms", elapsed, limit)
            raise error_time_limit(limit, int(elapsed), span)

    def check_heap(self, span: Optional[SourceSpan], *extra: Value) -> None:
        """
        Measure the live value graph against max_heap_size.

        `extra` holds values that are alive but not yet bound to a name,
        such as a container under construction.
        """
        limit = self.profile.max_heap_size
        if limit is None:
            return
        size = self.heap_size(extra)
        if size > limit:
            logger.info("heap budget exceeded: %d > %d", size, limit)
            raise error_heap_limit(limit, size, span)

    def heap_size(self, extra: Iterable[Value] = ()) -> int:
        """
        Count the distinct values reachable from every active scope.

        Roots are the current scope chain, the scopes of suspended callers,
        the deferred queue and `extra`. Frozen scopes hold shared host
        functions and are not part of the run's heap.
        """
        seen_values = set()
        seen_scopes = set()
        scope_stack: List[Scope] = [self.current_scope, *self.frames]
        value_stack: List[Value] = [*self.deferred, *extra]

        while scope_stack or value_stack:
            if scope_stack:
                scope = scope_stack.pop()
                if scope is None or scope.frozen or id(scope) in seen_scopes:
                    continue
                seen_scopes.add(id(scope))
                value_stack.extend(cell.value for cell in scope.cells.values())
                scope_stack.append(scope.parent)
                continue

            value = value_stack.pop()
            if id(value) in seen_values:
                continue
            seen_values.add(id(value))
            if value.kind == ValueKind.LIST:
                value_stack.extend(value.data)
            elif value.kind == ValueKind.MAP:
                value_stack.extend(value.data.values())
            elif value.kind == ValueKind.CLOSURE:
                scope_stack.append(value.data.scope)
            elif value.kind == ValueKind.BUILTIN and value.data.receiver is not None:
                value_stack.append(value.data.receiver)

        return len(seen_values)
