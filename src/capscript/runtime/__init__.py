"""
capscript runtime - tree-walking interpreter.

This module provides:
- Interpreter: Evaluates parsed programs under a sandbox profile
- Value: Tagged runtime values with structural equality and rendering
- Scope / ExecutionContext: Lexical environments and budget enforcement
- BuiltinRegistry: Capability-gated functions and the list/string property table
"""

from .values import (
    Value,
    ValueKind,
    Closure,
    BuiltinFunction,
    number_val,
    string_val,
    bool_val,
    nil_val,
    list_val,
    map_val,
    closure_val,
    builtin_val,
    kind_name,
    is_truthy,
    values_equal,
    render,
    to_python,
)

from .context import (
    Cell,
    Scope,
    ExecutionContext,
)

from .builtins import (
    Attribute,
    BuiltinRegistry,
    get_builtin_registry,
    builtin_scope,
    get_property,
    set_property,
)

from .interpreter import (
    Interpreter,
    ExecutionResult,
    evaluate,
    compile_and_run,
)

__all__ = [
    # Values
    'Value',
    'ValueKind',
    'Closure',
    'BuiltinFunction',
    'number_val',
    'string_val',
    'bool_val',
    'nil_val',
    'list_val',
    'map_val',
    'closure_val',
    'builtin_val',
    'kind_name',
    'is_truthy',
    'values_equal',
    'render',
    'to_python',

    # Context
    'Cell',
    'Scope',
    'ExecutionContext',

    # Builtins
    'Attribute',
    'BuiltinRegistry',
    'get_builtin_registry',
    'builtin_scope',
    'get_property',
    'set_property',

    # Interpreter
    'Interpreter',
    'ExecutionResult',
    'evaluate',
    'compile_and_run',
]
