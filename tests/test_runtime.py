"""
Tests for the capscript runtime (interpreter, values, scopes, budgets).
"""

import math
import textwrap

import pytest

from capscript import (
    tokenize, parse, evaluate, compile_and_run,
    Interpreter, ExecutionResult, Profile,
    UndefinedVariableError, TypeMismatchError, ArityError, MatchError,
    StackOverflowError, TimeLimitExceededError, HeapLimitExceededError,
    CapabilityDeniedError, UnexpectedCharacterError, ExpectedTokenError,
    EvaluationError,
)
from capscript.runtime import (
    Value, ValueKind, Scope, ExecutionContext,
    number_val, string_val, bool_val, nil_val, list_val, map_val,
    is_truthy, values_equal, render, to_python, builtin_scope,
)


def run(source: str, profile: Profile = None) -> Value:
    """Helper to lex, parse and evaluate source."""
    return evaluate(parse(tokenize(textwrap.dedent(source))), profile)


def run_py(source: str, profile: Profile = None):
    """Evaluate source and convert the result to plain Python data."""
    return to_python(run(source, profile))


def program(source: str):
    return parse(tokenize(textwrap.dedent(source)))


# --- Value Tests ---

class TestValues:
    """Test runtime value constructors and helpers."""

    def test_constructors(self):
        """Constructors tag values with their kind."""
        assert number_val(3).kind == ValueKind.NUMBER
        assert number_val(3).data == 3.0
        assert string_val("s").kind == ValueKind.STRING
        assert bool_val(1).data is True
        assert nil_val().data is None
        assert list_val([]).kind == ValueKind.LIST
        assert map_val({}).kind == ValueKind.MAP

    def test_render_numbers(self):
        """Integral numbers render without a fraction."""
        assert render(number_val(7)) == "7"
        assert render(number_val(-3)) == "-3"
        assert render(number_val(2.5)) == "2.5"
        assert render(number_val(math.inf)) == "inf"
        assert render(number_val(math.nan)) == "nan"

    def test_render_scalars(self):
        assert render(string_val("hi")) == "hi"
        assert render(bool_val(True)) == "true"
        assert render(bool_val(False)) == "false"
        assert render(nil_val()) == "nil"

    def test_render_containers(self):
        """Strings are quoted inside containers."""
        assert render(list_val([])) == "(,)"
        assert render(map_val({})) == "(:)"
        assert render(list_val([number_val(1)])) == "(1,)"
        assert render(list_val([number_val(1), string_val("a"), nil_val()])) == "(1, 'a', nil)"
        nested = map_val({"k": list_val([number_val(2), number_val(3)])})
        assert render(nested) == "('k': (2, 3))"

    def test_render_functions(self):
        assert render(run("|x, y| x")) == "<closure |x, y|>"
        assert render(run("print")) == "<builtin print>"

    def test_render_cycle(self):
        """A list containing itself does not recurse forever."""
        value = run("""
            xs := (,)
            xs.push(xs)
            xs
        """)
        assert render(value) == "(...,)"

    def test_to_python(self):
        value = run("('a': (1, 'x', nil), 'b': true)")
        assert to_python(value) == {"a": [1.0, "x", None], "b": True}

    def test_values_equal_direct(self):
        a = list_val([number_val(1), map_val({"k": string_val("v")})])
        b = list_val([number_val(1), map_val({"k": string_val("v")})])
        assert values_equal(a, b)
        assert not values_equal(number_val(1), string_val("1"))
        assert values_equal(nil_val(), nil_val())

    def test_render_self_reference_after_elements(self):
        value = run("l := (1,)  l.push(l)  l")
        assert render(value) == "(1, ...)"


class TestSelfReferencingValues:
    """Containers that contain themselves compare, render and convert."""

    def test_list_equals_itself(self):
        assert run_py("""
            l := (1,)
            l.push(l)
            l == l
        """) is True

    def test_distinct_self_containing_lists(self):
        assert run_py("""
            a := (1,)
            a.push(a)
            b := (1,)
            b.push(b)
            a == b
        """) is True

    def test_different_self_containing_lists(self):
        assert run_py("""
            a := (1,)
            a.push(a)
            b := (2,)
            b.push(b)
            a == b
        """) is False

    def test_map_equals_itself(self):
        assert run_py("""
            m := ('a': 1)
            m.b := m
            m == m
        """) is True

    def test_has_on_self_containing_list(self):
        assert run_py("""
            l := (1,)
            l.push(l)
            l.has(l)
        """) is True

    def test_match_on_self_containing_list(self):
        assert run_py("""
            l := (1,)
            l.push(l)
            match l { l: 'self', _: 'other' }
        """) == "self"

    def test_to_python_keeps_the_cycle(self):
        py = run_py("l := (1,)  l.push(l)  l")
        assert py[0] == 1.0
        assert py[1] is py

    def test_to_python_keeps_sharing(self):
        py = run_py("inner := (1,)  both := (inner, inner)")
        assert py[0] is py[1]

    def test_python_value_of_self_containing_list(self):
        result = compile_and_run("l := (1,)  l.push(l)  l")
        assert result.success
        py = result.python_value
        assert py[1] is py


class TestDeeplyNestedValues:
    """Nesting deeper than the host stack still compares, renders and converts."""

    SOURCE = """
        s := ('a': (,), 'b': (,), 'i': 0)
        while s.i < 3000 { s.a := (s.a,)  s.b := (s.b,)  s.i := s.i + 1 }
    """

    def test_equality(self):
        assert run_py(self.SOURCE + "s.a == s.b\n") is True

    def test_render(self):
        text = render(run(self.SOURCE + "s.a\n"))
        assert text.startswith("((((")
        assert text.count("(") == 3001

    def test_to_python(self):
        py = run_py(self.SOURCE + "s.a\n")
        depth = 0
        while py:
            assert len(py) == 1
            py = py[0]
            depth += 1
        assert depth == 3000
        assert py == []


# --- Scope and Context Tests ---

class TestScope:
    """Test scope chains and cells."""

    def test_declare_and_get(self):
        scope = Scope()
        scope.declare("x", number_val(1))
        assert scope.get("x").data == 1.0
        assert scope.get("y") is None

    def test_redeclare_reuses_cell(self):
        """Rebinding a name writes into the existing cell."""
        scope = Scope()
        first = scope.declare("x", number_val(1))
        second = scope.declare("x", number_val(2))
        assert first is second
        assert first.value.data == 2.0

    def test_child_sees_parent(self):
        parent = Scope(name="parent")
        parent.declare("x", number_val(1))
        child = Scope(parent=parent, name="child")
        assert child.lookup("x") is parent.lookup("x")
        child.declare("x", number_val(2))
        assert child.get("x").data == 2.0
        assert parent.get("x").data == 1.0

    def test_builtin_scope_is_frozen(self):
        """The shared built-in namespace cannot be modified."""
        scope = builtin_scope()
        assert scope.frozen
        assert scope.get("print").kind == ValueKind.BUILTIN
        with pytest.raises(RuntimeError):
            scope.declare("print", nil_val())


class TestExecutionContext:
    """Test heap accounting and scope management."""

    def test_new_scope_restores(self):
        ctx = ExecutionContext()
        outer = ctx.current_scope
        with ctx.new_scope("block") as inner:
            assert ctx.current_scope is inner
            assert inner.parent is outer
        assert ctx.current_scope is outer

    def test_heap_size_counts_distinct_values(self):
        """Shared values are counted once."""
        ctx = ExecutionContext()
        xs = list_val([number_val(1), number_val(2)])
        ctx.current_scope.declare("xs", xs)
        assert ctx.heap_size() == 3
        ctx.current_scope.declare("ys", xs)
        assert ctx.heap_size() == 3

    def test_heap_size_includes_extra_values(self):
        ctx = ExecutionContext()
        assert ctx.heap_size([list_val([nil_val()])]) == 2

    def test_heap_size_ignores_frozen_scopes(self):
        ctx = ExecutionContext(current_scope=Scope(parent=builtin_scope()))
        assert ctx.heap_size() == 0


# --- Evaluation Tests ---

class TestArithmetic:
    """Test arithmetic operators."""

    def test_precedence(self):
        """1 + 2 * 3 evaluates to 7."""
        value = run("1 + 2 * 3")
        assert value.kind == ValueKind.NUMBER
        assert value.data == 7.0

    def test_grouping(self):
        assert run_py("(1 + 2) * 3") == 9.0

    def test_left_associative(self):
        assert run_py("2 - 3 - 4") == -5.0
        assert run_py("64 / 4 / 2") == 8.0

    def test_division(self):
        assert run_py("10 / 4") == 2.5

    def test_remainder(self):
        """Remainder keeps the sign of the dividend."""
        assert run_py("7 % 3") == 1.0
        assert run_py("-7 % 3") == -1.0

    def test_unary_minus(self):
        assert run_py("-(2 + 3)") == -5.0

    def test_division_by_zero(self):
        """Division follows IEEE semantics."""
        assert run_py("1 / 0") == math.inf
        assert run_py("-1 / 0") == -math.inf
        assert math.isnan(run_py("0 / 0"))
        assert math.isnan(run_py("5 % 0"))

    @pytest.mark.parametrize("source", [
        "1 + 'a'",
        "'a' + 'b'",
        "nil * 2",
        "(1,) - 1",
        "-'a'",
    ])
    def test_non_numbers_rejected(self, source):
        with pytest.raises(TypeMismatchError) as exc_info:
            run(source)
        assert exc_info.value.code == "E402"


class TestComparison:
    """Test comparison and equality operators."""

    def test_number_ordering(self):
        assert run_py("1 < 2") is True
        assert run_py("2 <= 2") is True
        assert run_py("3 > 4") is False
        assert run_py("4 >= 5") is False

    def test_string_ordering(self):
        assert run_py("'abc' < 'abd'") is True

    @pytest.mark.parametrize("source", ["1 < 'a'", "(1,) < (2,)", "nil >= nil"])
    def test_incompatible_ordering(self, source):
        with pytest.raises(TypeMismatchError):
            run(source)

    def test_equality_across_kinds(self):
        """== accepts any operands."""
        assert run_py("1 == '1'") is False
        assert run_py("1 != '1'") is True
        assert run_py("nil == nil") is True
        assert run_py("(,) == (:)") is False

    def test_structural_list_equality(self):
        """Two structurally identical lists are equal."""
        assert run_py("(1, (2, 'x')) == (1, (2, 'x'))") is True
        assert run_py("(1, 2) == (1, 2, 3)") is False

    def test_map_equality_ignores_order(self):
        assert run_py("('a': 1, 'b': 2) == ('b': 2, 'a': 1)") is True
        assert run_py("('a': 1) == ('a': 2)") is False

    def test_closures_never_equal(self):
        """Two closures are never equal, not even to themselves."""
        assert run_py("""
            f := |x| x
            f == f
        """) is False
        assert run_py("""
            f := |x| x
            f != f
        """) is True

    def test_builtin_equality(self):
        """Built-ins are equal when bound to the same receiver."""
        assert run_py("print == print") is True
        assert run_py("""
            xs := (1,)
            xs.push == xs.push
        """) is True
        assert run_py("""
            xs := (1,)
            ys := (1,)
            xs.push == ys.push
        """) is False


class TestTruthiness:
    """Test truthiness through 'not'."""

    @pytest.mark.parametrize("source,truthy", [
        ("0", False),
        ("1", True),
        ("-0.5", True),
        ("''", False),
        ("'a'", True),
        ("(,)", False),
        ("(0,)", True),
        ("(:)", False),
        ("('k': nil)", True),
        ("nil", False),
        ("true", True),
        ("false", False),
        ("|x| x", True),
        ("print", True),
    ])
    def test_truthiness(self, source, truthy):
        assert run_py(f"not not {source}") is truthy
        assert is_truthy(run(source)) is truthy


class TestLogical:
    """Test short-circuit logical operators."""

    def test_or_returns_deciding_operand(self):
        assert run_py("0 or 'x'") == "x"
        assert run_py("'a' or 'b'") == "a"

    def test_and_returns_deciding_operand(self):
        assert run_py("1 and 2") == 2.0
        assert run_py("0 and 2") == 0.0

    def test_short_circuit(self):
        """The unneeded operand is not evaluated."""
        assert run_py("nil and missing") is None
        assert run_py("1 or missing") == 1.0

    def test_not(self):
        assert run_py("not 1") is False
        assert run_py("not nil") is True


class TestVariables:
    """Test variable binding and lookup."""

    def test_assign_and_read(self):
        assert run_py("""
            x := 5
            x * 2
        """) == 10.0

    def test_assignment_returns_value(self):
        assert run_py("y := (x := 3) + 1") == 4.0

    def test_chained_assignment(self):
        assert run_py("""
            a := b := 2
            a + b
        """) == 4.0

    def test_undefined_variable(self):
        with pytest.raises(UndefinedVariableError) as exc_info:
            run("y")
        assert exc_info.value.name == "y"
        assert exc_info.value.code == "E401"
        assert exc_info.value.span.start.column == 1

    def test_empty_program_is_nil(self):
        assert run("").kind == ValueKind.NIL

    def test_builtins_can_be_shadowed(self):
        assert run_py("""
            print := 5
            print
        """) == 5.0
        # A fresh run still sees the built-in
        assert run("print").kind == ValueKind.BUILTIN


class TestScoping:
    """Test blocks, closures and lexical scoping."""

    def test_block_value(self):
        assert run_py("{ 1 2 3 }") == 3.0
        assert run_py("{}") is None

    def test_block_reads_outer(self):
        assert run_py("""
            x := 1
            { x + 1 }
        """) == 2.0

    def test_block_bindings_are_local(self):
        """':=' inside a block binds in the block's scope."""
        assert run_py("""
            x := 1
            { x := 2 }
            x
        """) == 1.0

    def test_block_names_do_not_leak(self):
        with pytest.raises(UndefinedVariableError):
            run("""
                { inner := 1 }
                inner
            """)

    def test_parameters_do_not_leak(self):
        with pytest.raises(UndefinedVariableError):
            run("""
                f := |a| a
                f(1)
                a
            """)

    def test_closure_captures_by_reference(self):
        """Rebinding a captured name is visible to the closure."""
        interp = Interpreter()
        interp.evaluate(program("x := 5"))
        interp.evaluate(program("add := |w| { x + w }"))
        assert interp.evaluate(program("add(3)")).data == 8.0
        interp.evaluate(program("x := 10"))
        assert interp.evaluate(program("add(3)")).data == 13.0

    def test_lexical_not_dynamic(self):
        """Closures see their defining scope, not the caller's."""
        assert run_py("""
            x := 'outer'
            f := | | x
            g := | | { x := 'inner'  f() }
            g()
        """) == "outer"

    def test_mutation_through_container(self):
        """Shared state is updated through map properties."""
        assert run_py("""
            counter := ('n': 0)
            inc := | | counter.n := counter.n + 1
            inc()
            inc()
            counter.n
        """) == 2.0

    def test_closure_factory(self):
        """Each call of a factory captures its own scope."""
        assert run_py("""
            make_adder := |n| |x| x + n
            add2 := make_adder(2)
            add10 := make_adder(10)
            add2(1) + add10(1)
        """) == 14.0

    def test_recursion(self):
        assert run_py("""
            fact := |n| if n <= 1 then 1 else n * fact(n - 1)
            fact(10)
        """) == 3628800.0

    def test_higher_order(self):
        assert run_py("""
            compose := |f, g| |x| f(g(x))
            inc := |x| x + 1
            dbl := |x| x * 2
            compose(inc, dbl)(5)
        """) == 11.0


class TestCalls:
    """Test call semantics and arity."""

    def test_closure_arity_is_exact(self):
        with pytest.raises(ArityError) as exc_info:
            run("""
                f := |a, b| a
                f(1)
            """)
        assert exc_info.value.expected == "2"
        assert exc_info.value.actual == 1
        assert exc_info.value.code == "E403"

    def test_too_many_arguments(self):
        with pytest.raises(ArityError):
            run("""
                f := | | 1
                f(1)
            """)

    def test_builtin_arity(self):
        with pytest.raises(ArityError) as exc_info:
            run("(1,).push()")
        assert exc_info.value.expected == "1"

    def test_arity_checked_before_capability(self):
        with pytest.raises(ArityError):
            run("read_file()")

    def test_calling_a_non_function(self):
        with pytest.raises(TypeMismatchError):
            run("5(1)")

    def test_arguments_left_to_right(self):
        assert run_py("""
            log := (,)
            note := |x| { log.push(x)  x }
            f := |a, b, c| log
            f(note(1), note(2), note(3))
        """) == [1.0, 2.0, 3.0]


class TestContainers:
    """Test list and map values."""

    def test_list_literal(self):
        assert run_py("(1, 'a', nil, true)") == [1.0, "a", None, True]

    def test_map_literal(self):
        assert run_py("('a': 1, 'b': (2, 3))") == {"a": 1.0, "b": [2.0, 3.0]}

    def test_duplicate_key_keeps_position(self):
        """A repeated key overwrites the value but keeps the first position."""
        value = run_py("('a': 1, 'b': 2, 'a': 3)")
        assert value == {"a": 3.0, "b": 2.0}
        assert list(value) == ["a", "b"]

    @pytest.mark.parametrize("source", ["(1: 'x')", "(nil: 1)", "((,): 1)"])
    def test_map_keys_must_be_strings(self, source):
        """A non-string key is a type error, not a crash."""
        with pytest.raises(TypeMismatchError) as exc_info:
            run(source)
        assert exc_info.value.actual != "string"

    def test_computed_key(self):
        assert run_py("""
            k := 'name'
            get := |m| m.name
            get((k: 1))
        """) == 1.0

    def test_list_aliasing(self):
        """Mutation through one alias is visible through all."""
        assert run_py("""
            a := (1, 2)
            b := a
            b.push(3)
            a.length
        """) == 3.0

    def test_map_aliasing(self):
        assert run_py("""
            m := ('k': 1)
            n := m
            n.k := 5
            m.k
        """) == 5.0

    def test_nested_aliasing(self):
        assert run_py("""
            inner := (,)
            outer := (inner,)
            inner.push(1)
            outer.first.length
        """) == 1.0


class TestProperties:
    """Test the property table for maps, lists and strings."""

    def test_list_attributes(self):
        assert run_py("""
            xs := (10, 20, 30)
            attrs := (xs.length, xs.first, xs.last)
        """) == [3.0, 10.0, 30.0]

    def test_empty_list_ends_are_nil(self):
        assert run_py("(,).first") is None
        assert run_py("(,).last") is None

    def test_push_returns_list(self):
        assert run_py("""
            xs := (,)
            xs.push(1).push(2)
            xs
        """) == [1.0, 2.0]

    def test_pop(self):
        assert run_py("""
            xs := (1, 2)
            popped := xs.pop()
            outcome := (popped, xs.length)
        """) == [2.0, 1.0]
        assert run_py("(,).pop()") is None

    def test_get(self):
        assert run_py("(1, 2).get(1)") == 2.0
        assert run_py("(1, 2).get(5)") is None
        assert run_py("(1, 2).get(-1)") is None
        assert run_py("(1, 2).get(0.5)") is None

    def test_get_requires_number(self):
        with pytest.raises(TypeMismatchError):
            run("(1, 2).get('a')")

    def test_has(self):
        assert run_py("(1, (2, 3)).has((2, 3))") is True
        assert run_py("(1, 2).has(4)") is False

    def test_each(self):
        assert run_py("""
            total := ('sum': 0)
            xs := (1, 2, 3)
            xs.each |x| total.sum := total.sum + x
            total.sum
        """) == 6.0

    def test_map(self):
        assert run_py("""
            xs := (1, 2, 3)
            ys := xs.map |x| x * x
            both := (xs, ys)
        """) == [[1.0, 2.0, 3.0], [1.0, 4.0, 9.0]]

    def test_trailing_closure_call(self):
        assert run_py("""
            xs := (1, 2)
            xs.map() |x| x + 1
        """) == [2.0, 3.0]

    def test_string_properties(self):
        assert run_py("'hello'.length") == 5.0
        assert run_py("'Hi'.upper()") == "HI"
        assert run_py("'Hi'.lower()") == "hi"
        assert run_py("'hello'.has('ell')") is True
        assert run_py("'hello'.has('z')") is False
        assert run_py("'abc'.get(1)") == "b"
        assert run_py("'abc'.get(9)") is None

    def test_string_split(self):
        assert run_py("'a,b,c'.split(',')") == ["a", "b", "c"]
        assert run_py("'abc'.split('')") == ["a", "b", "c"]

    def test_absent_map_key_is_nil(self):
        assert run_py("('a': 1).b") is None

    @pytest.mark.parametrize("source", ["(1,).foo", "'s'.push", "5 .x", "nil.x", "true.length"])
    def test_unknown_property(self, source):
        with pytest.raises(TypeMismatchError):
            run(source)

    def test_map_property_assignment(self):
        assert run_py("""
            m := (:)
            m.a := 1
            m.b := 2
            m
        """) == {"a": 1.0, "b": 2.0}

    def test_property_assignment_returns_value(self):
        assert run_py("""
            m := (:)
            m.k := 4
        """) == 4.0

    def test_list_end_assignment(self):
        assert run_py("""
            xs := (1, 2, 3)
            xs.first := 9
            xs.last := 7
            xs
        """) == [9.0, 2.0, 7.0]

    @pytest.mark.parametrize("source", [
        "xs := (,)\nxs.first := 1",
        "xs := (1,)\nxs.length := 5",
        "s := 'abc'\ns.length := 1",
        "n := 1\nn.x := 1",
    ])
    def test_invalid_property_assignment(self, source):
        with pytest.raises(TypeMismatchError):
            run(source)


class TestControlFlow:
    """Test if, while and match."""

    def test_if(self):
        assert run_py("if 1 then 'yes' else 'no'") == "yes"
        assert run_py("if (,) then 'yes' else 'no'") == "no"
        assert run_py("if 0 then 'yes'") is None

    def test_while(self):
        """The loop's value is the last body value."""
        assert run_py("""
            i := 0
            while i < 3 i := i + 1
        """) == 3.0

    def test_while_with_block_body(self):
        assert run_py("""
            state := ('i': 0)
            while state.i < 3 { state.i := state.i + 1 }
            state.i
        """) == 3.0

    def test_while_zero_iterations(self):
        assert run_py("while false 1") is None

    @pytest.mark.parametrize("call,expected", [
        ("describe(0)", "zero"),
        ("describe((1, 2))", "pair"),
        ("describe('a')", "letter"),
        ("describe(5)", "other"),
    ])
    def test_match(self, call, expected):
        source = "describe := |x| match x { 0: 'zero', (1, 2): 'pair', 'a': 'letter', _: 'other' }\n"
        assert run_py(source + call) == expected

    def test_first_matching_arm_wins(self):
        assert run_py("match 1 { 1: 'first', 1: 'second' }") == "first"

    def test_match_without_arm(self):
        with pytest.raises(MatchError) as exc_info:
            run("match 3 { 1: 'one' }")
        assert exc_info.value.code == "E408"

    def test_match_subject_evaluated_once(self):
        assert run_py("""
            log := (,)
            subject := | | { log.push(1)  2 }
            result := match subject() { 1: 'a', 2: 'b' }
            result == 'b' and log.length == 1
        """) is True


class TestBudgets:
    """Test stack, time and heap budgets."""

    def test_stack_overflow(self):
        """Unbounded recursion stops at max_stack_depth."""
        with pytest.raises(StackOverflowError) as exc_info:
            run("""
                f := |n| f(n + 1)
                f(0)
            """, Profile(max_stack_depth=10))
        assert exc_info.value.limit == 10
        assert exc_info.value.observed == 11
        assert exc_info.value.code == "E405"

    def test_stack_limit_boundary(self):
        """Exactly max_stack_depth nested calls are allowed."""
        source = "f := |n| if n == 0 then 0 else f(n - 1)\n"
        profile = Profile(max_stack_depth=5)
        assert run_py(source + "f(4)", profile) == 0.0
        with pytest.raises(StackOverflowError):
            run(source + "f(5)", profile)

    def test_host_recursion_becomes_stack_overflow(self):
        """Without a depth budget, host recursion limits still surface cleanly."""
        with pytest.raises(StackOverflowError) as exc_info:
            run("""
                f := |n| f(n + 1)
                f(0)
            """)
        assert exc_info.value.observed > 1
        assert exc_info.value.limit is None
        assert "host recursion limit" in exc_info.value.diagnostic.message
        assert "exceeds limit" not in exc_info.value.diagnostic.message

    def test_time_limit(self):
        with pytest.raises(TimeLimitExceededError) as exc_info:
            run("while true nil", Profile(max_time_ms=20))
        assert exc_info.value.limit == 20
        assert exc_info.value.code == "E406"

    def test_block_local_counter_needs_a_budget(self):
        """A counter rebound inside a block never updates the outer name."""
        with pytest.raises(TimeLimitExceededError):
            run("""
                i := 0
                while i < 3 { i := i + 1 }
            """, Profile(max_time_ms=20))

    def test_heap_limit(self):
        with pytest.raises(HeapLimitExceededError) as exc_info:
            run("""
                xs := (,)
                while true xs.push(1)
            """, Profile(max_heap_size=50))
        assert exc_info.value.limit == 50
        assert exc_info.value.observed > 50
        assert exc_info.value.code == "E407"

    def test_heap_counts_only_live_values(self):
        """Values that become unreachable do not count."""
        assert run_py("""
            i := ('n': 0)
            while i.n < 200 i.n := i.n + 1
            i.n
        """, Profile(max_heap_size=10)) == 200.0

    def test_container_construction_is_checked(self):
        with pytest.raises(HeapLimitExceededError):
            run("(1, 2, 3, 4, 5)", Profile(max_heap_size=3))

    def test_budgets_are_errors(self):
        with pytest.raises(EvaluationError):
            run("while true nil", Profile(max_time_ms=5))


class TestInterpreter:
    """Test the reusable Interpreter."""

    def test_root_scope_persists(self):
        interp = Interpreter()
        interp.evaluate(program("x := 1"))
        assert interp.evaluate(program("x + 1")).data == 2.0

    def test_usable_after_error(self):
        """A failed run leaves the interpreter usable."""
        interp = Interpreter()
        interp.evaluate(program("x := 1"))
        with pytest.raises(UndefinedVariableError):
            interp.evaluate(program("{ y := 2  missing }"))
        assert interp.evaluate(program("x + 1")).data == 2.0
        with pytest.raises(UndefinedVariableError):
            interp.evaluate(program("y"))

    def test_usable_after_stack_overflow(self):
        interp = Interpreter(Profile(max_stack_depth=3))
        interp.evaluate(program("f := |n| f(n)"))
        with pytest.raises(StackOverflowError):
            interp.evaluate(program("f(1)"))
        assert interp.evaluate(program("1 + 1")).data == 2.0

    def test_time_budget_is_per_run(self):
        interp = Interpreter(Profile(max_time_ms=1000))
        for _ in range(3):
            assert interp.evaluate(program("1 + 1")).data == 2.0

    def test_context_cleared_after_run(self):
        interp = Interpreter()
        interp.evaluate(program("1"))
        assert interp.context is None


class TestCompileAndRun:
    """Test the one-call API."""

    def test_success(self):
        result = compile_and_run("x := 6\nx * 7")
        assert isinstance(result, ExecutionResult)
        assert result.success
        assert result.python_value == 42.0
        assert result.error is None
        assert result.error_message is None

    def test_lexer_errors_collected(self):
        """All lexical errors are reported; the first is the error."""
        result = compile_and_run("1 + @ + $")
        assert not result.success
        assert isinstance(result.error, UnexpectedCharacterError)
        assert result.diagnostics.error_count == 2
        assert result.value is None

    def test_parser_error(self):
        result = compile_and_run("(1, 2")
        assert not result.success
        assert isinstance(result.error, ExpectedTokenError)
        assert "E102" in result.error_message

    def test_runtime_error_has_source_line(self):
        result = compile_and_run("x := 1\nx + 'a'")
        assert not result.success
        assert isinstance(result.error, TypeMismatchError)
        assert result.error.diagnostic.source_line == "x + 'a'"
        assert "x + 'a'" in result.diagnostics.format_all()

    def test_profile_applies(self):
        result = compile_and_run("print(1)")
        assert isinstance(result.error, CapabilityDeniedError)

    def test_existing_interpreter(self):
        interp = Interpreter()
        compile_and_run("x := 2", interpreter=interp)
        assert compile_and_run("x * 3", interpreter=interp).python_value == 6.0

    def test_filename_in_diagnostics(self):
        result = compile_and_run("missing", filename="rules.cap")
        assert result.error_message.startswith("rules.cap:1:1")
