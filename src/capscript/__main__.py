#!/usr/bin/env python3
"""
CLI for the capscript interpreter.

Usage:
    python -m capscript run FILE [--profile YAML] [--allow CAP ...] [budgets] [--json]
    python -m capscript run -e SOURCE ...
    python -m capscript check FILE
    python -m capscript tokens FILE
    python -m capscript ast FILE

FILE may be '-' to read the program from standard input.

Exit codes: 0 on success, 1 when the script fails, 2 on usage errors
(bad arguments, unreadable files, invalid profiles).

Examples:
    # Evaluate an expression
    python -m capscript run -e "(1, 2, 3).map |x| x * x"

    # Allow printing, with a 100 ms budget
    python -m capscript run script.cap --allow io --max-time-ms 100

    # Use a profile file, overriding its stack budget
    python -m capscript run script.cap --profile sandbox.yaml --max-stack-depth 32
"""

import argparse
import json
import logging
import sys
from pathlib import Path

EXIT_OK = 0
EXIT_SCRIPT_ERROR = 1
EXIT_USAGE = 2


class UsageError(Exception):
    """Bad command-line input, reported with exit code 2."""
    pass


def read_source(file_arg: str) -> tuple:
    """Read program text from a path or '-'. Returns (source, filename)."""
    if file_arg == '-':
        return sys.stdin.read(), '<stdin>'
    source_path = Path(file_arg)
    try:
        return source_path.read_text(encoding='utf-8'), str(source_path)
    except (OSError, UnicodeDecodeError) as e:
        raise UsageError(f"cannot read {source_path}: {e}") from e


def build_profile(args):
    """Combine --profile with --allow and the budget flags."""
    from . import Profile, ProfileError, load_profile

    try:
        profile = load_profile(args.profile) if args.profile else Profile()
        return profile.with_overrides(
            allow=args.allow or (),
            max_stack_depth=args.max_stack_depth,
            max_heap_size=args.max_heap_size,
            max_time_ms=args.max_time_ms,
        )
    except ProfileError as e:
        raise UsageError(str(e)) from e


def cmd_run(args):
    """Run a program and print its value."""
    from . import compile_and_run, render

    if args.expression is not None:
        source, filename = args.expression, '<expr>'
    else:
        source, filename = read_source(args.file)
    profile = build_profile(args)

    result = compile_and_run(source, profile, filename=filename)

    if args.json:
        payload = {
            'success': result.success,
            'value': result.python_value,
            'rendered': render(result.value) if result.value is not None else None,
        }
        payload.update(result.diagnostics.to_json())
        try:
            text = json.dumps(payload, indent=2)
        except (ValueError, RecursionError):
            # Self-referencing or very deep values have no JSON form
            payload['value'] = None
            payload['value_omitted'] = 'value is cyclic or nested too deeply for JSON'
            text = json.dumps(payload, indent=2)
        print(text)
    elif result.success:
        print(render(result.value))
    else:
        print(result.diagnostics.format_all(), file=sys.stderr)

    return EXIT_OK if result.success else EXIT_SCRIPT_ERROR


def _lex_and_parse(source: str, filename: str):
    """Lex and parse, collecting diagnostics. Returns (program, diagnostics)."""
    from . import Lexer, parse, DiagnosticCollector, DslError

    lexer = Lexer(source, filename)
    tokens = lexer.tokenize()
    if lexer.diagnostics.has_errors:
        return None, lexer.diagnostics

    diagnostics = DiagnosticCollector()
    try:
        program = parse(tokens)
    except DslError as e:
        e.attach_source(source.splitlines())
        diagnostics.add_error(e)
        return None, diagnostics
    return program, diagnostics


def cmd_check(args):
    """Check a program for lexical and syntax errors."""
    source, filename = read_source(args.file)
    program, diagnostics = _lex_and_parse(source, filename)

    if program is None:
        print(diagnostics.format_all(), file=sys.stderr)
        return EXIT_SCRIPT_ERROR

    print(f"OK: {filename} - {len(program)} expression(s), no errors")
    return EXIT_OK


def cmd_tokens(args):
    """Print the token stream, including any error tokens."""
    from . import Lexer

    source, filename = read_source(args.file)
    lexer = Lexer(source, filename)
    for token in lexer:
        print(f"{token.span.start}\t{token}")

    if lexer.diagnostics.has_errors:
        print(lexer.diagnostics.format_all(), file=sys.stderr)
        return EXIT_SCRIPT_ERROR
    return EXIT_OK


def cmd_ast(args):
    """Print the parsed syntax tree."""
    from . import format_ast

    source, filename = read_source(args.file)
    program, diagnostics = _lex_and_parse(source, filename)

    if program is None:
        print(diagnostics.format_all(), file=sys.stderr)
        return EXIT_SCRIPT_ERROR

    for expr in program:
        print(format_ast(expr))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    from .profile import CAPABILITY_NAMES

    parser = argparse.ArgumentParser(
        prog='python -m capscript',
        description='capscript sandboxed interpreter',
    )
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='action', required=True)

    # run command
    run_parser = subparsers.add_parser('run', help='Run a program')
    run_parser.add_argument('file', nargs='?', help="Source file, or '-' for stdin")
    run_parser.add_argument('-e', '--expression', metavar='SOURCE',
                            help='Program text to run instead of a file')
    run_parser.add_argument('--profile', metavar='YAML',
                            help='Sandbox profile file')
    run_parser.add_argument('--allow', action='append', choices=CAPABILITY_NAMES,
                            metavar='CAP',
                            help=f"Enable a capability (repeatable): {', '.join(CAPABILITY_NAMES)}")
    run_parser.add_argument('--max-stack-depth', type=int, metavar='N')
    run_parser.add_argument('--max-heap-size', type=int, metavar='N')
    run_parser.add_argument('--max-time-ms', type=int, metavar='N')
    run_parser.add_argument('--json', action='store_true',
                            help='Print the result and diagnostics as JSON')

    # check command
    check_parser = subparsers.add_parser('check', help='Check a program for syntax errors')
    check_parser.add_argument('file', help="Source file, or '-' for stdin")

    # tokens command
    tokens_parser = subparsers.add_parser('tokens', help='Print the token stream')
    tokens_parser.add_argument('file', help="Source file, or '-' for stdin")

    # ast command
    ast_parser = subparsers.add_parser('ast', help='Print the syntax tree')
    ast_parser.add_argument('file', help="Source file, or '-' for stdin")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    if args.action == 'run' and (args.file is None) == (args.expression is None):
        parser.error('run needs exactly one of FILE or -e SOURCE')

    commands = {
        'run': cmd_run,
        'check': cmd_check,
        'tokens': cmd_tokens,
        'ast': cmd_ast,
    }
    try:
        return commands[args.action](args)
    except UsageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == '__main__':
    sys.exit(main())
