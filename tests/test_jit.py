import math

import pytest

from duoc import compile_source, JitSession

PROGRAM = """
fun fib(x: int): int {
    if x <= 1 { return 1; }
    return fib(x - 2) + fib(x - 1);
}

fun truthy(x: double): int { if x { return 1; } return 0; }
fun truthy_int(x: int): int { if x { return 1; } return 0; }

fun either(a: int, b: int): int { return a or b; }
fun both(a: int, b: int): int { return a and b; }

fun sum(n: int): int {
    var s = 0;
    var i = 1;
    while i <= n {
        s = s + i;
        i = i + 1;
    }
    return s;
}

fun avg(a: int, b: int): double { return (a + b) / 2.0; }
fun div(a: int, b: int): int { return a / b; }
fun trunc(x: double): int { return x as int; }
fun lt(a: double, b: double): int { return a < b; }
fun eq(a: double, b: double): int { return a == b; }

fun shadow(): double {
    var x = 1;
    var x = x + 0.5;
    return x;
}

fun neg(a: int, b: double): double { return -a - b; }
"""


@pytest.fixture(scope="module")
def jit():
    return JitSession(compile_source(PROGRAM))


def test_fib(jit):
    assert [jit("fib", n) for n in range(6)] == [1, 1, 2, 3, 5, 8]
    assert jit("fib", 10) == 89


@pytest.mark.parametrize("value, expected", [(0, 0), (1, 1), (-1, 1)])
def test_integer_truthiness(jit, value, expected):
    assert jit("truthy_int", value) == expected


@pytest.mark.parametrize("value, expected", [(0.0, 0), (1.0, 1), (-1.0, 1), (math.nan, 1)])
def test_float_truthiness(jit, value, expected):
    assert jit("truthy", value) == expected


@pytest.mark.parametrize("a, b", [(0, 0), (0, 1), (1, 0), (1, 1), (5, -3)])
def test_and_computes_the_same_as_or(jit, a, b):
    expected = int(a != 0 or b != 0)
    assert jit("either", a, b) == expected
    assert jit("both", a, b) == expected


def test_while_loop(jit):
    assert jit("sum", 10) == 55
    assert jit("sum", 0) == 0


def test_mixed_arithmetic(jit):
    assert jit("avg", 3, 4) == 3.5


def test_integer_division_truncates_toward_zero(jit):
    assert jit("div", 7, 2) == 3
    assert jit("div", -7, 2) == -3


def test_float_to_int_truncates(jit):
    assert jit("trunc", 2.9) == 2
    assert jit("trunc", -2.9) == -2


def test_float_comparisons_are_true_for_nan(jit):
    assert jit("lt", 1.0, 2.0) == 1
    assert jit("lt", 2.0, 1.0) == 0
    assert jit("lt", math.nan, 1.0) == 1
    assert jit("eq", math.nan, math.nan) == 1


def test_shadowed_variable(jit):
    assert jit("shadow") == 1.5


def test_negation(jit):
    assert jit("neg", 2, 0.5) == -2.5


def test_unknown_function(jit):
    with pytest.raises(KeyError):
        jit.function("nope")
