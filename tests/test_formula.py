import pytest

from tabulation.errors import FormulaError
from tabulation.formula import compile_formula, evaluate_formula, tokenize

VARS = {"avg_score": 10, "median_score": 9, "min_score": 4, "max_score": 20, "judge_count": 3}


@pytest.mark.parametrize(
    "text, expected",
    [
        ("avg_score", 10),
        ("avg_score * 0.8 + max_score * 0.2", 12),
        ("(avg_score + median_score) / 2", 9.5),
        ("avg_score - min_score - judge_count", 3),
        ("-min_score + 10", 6),
        ("2 * (3 + 4)", 14),
        (".5 * max_score", 10),
    ],
)
def test_evaluates_arithmetic(text, expected):
    assert evaluate_formula(text, VARS) == pytest.approx(expected)


@pytest.mark.parametrize(
    "text",
    [
        "",
        "   ",
        "avg_score +",
        "(avg_score",
        "avg_score)",
        "avg_score ** 2",
        "total_score * 2",
        "__import__('os').system('ls')",
        "avg_score.real",
        "max(avg_score, 1)",
    ],
)
def test_rejects_anything_else(text):
    with pytest.raises(FormulaError):
        compile_formula(text)


def test_division_by_zero_is_a_formula_error():
    formula = compile_formula("avg_score / (judge_count - 3)")
    with pytest.raises(FormulaError):
        formula.evaluate(VARS)


def test_missing_variable_value():
    with pytest.raises(FormulaError):
        evaluate_formula("median_score + 1", {"avg_score": 1})


def test_formula_error_is_a_value_error():
    with pytest.raises(ValueError):
        compile_formula("1 +")


def test_tokenize():
    assert tokenize("avg_score*2") == [("name", "avg_score"), ("op", "*"), ("number", "2")]
