"""
Arithmetic evaluator for custom ranking formulas.

Formulas combine numbers, ``+ - * /``, parentheses and the per-contestant
inputs ``avg_score``, ``median_score``, ``min_score``, ``max_score`` and
``judge_count``. Nothing else is accepted, so a formula can never reach
names, attributes or calls outside that set.

    >>> compile_formula("avg_score * 0.8 + max_score * 0.2").evaluate(
    ...     {"avg_score": 10, "max_score": 20})
    12.0
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Tuple, Union

from tabulation.errors import FormulaError

FORMULA_VARIABLES = ("avg_score", "median_score", "min_score", "max_score", "judge_count")

_TOKEN_RE = re.compile(
    r"\s*(?:(?P<number>\d+(?:\.\d*)?|\.\d+)|(?P<name>[A-Za-z_][A-Za-z0-9_]*)|(?P<op>[-+*/()]))"
)

Token = Tuple[str, str]

# Parsed expression nodes: ("num", value) | ("var", name) | ("neg", node) | (op, left, right)
Node = Union[Tuple[str, float], Tuple[str, str], Tuple[str, "Node"], Tuple[str, "Node", "Node"]]


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None or match.end() == pos:
            raise FormulaError(f"Unexpected character {text[pos:].strip()[:1]!r} at position {pos}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Tuple[str, str]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return ("end", "")

    def take(self) -> Tuple[str, str]:
        token = self.peek()
        self.pos += 1
        return token

    def parse(self) -> Node:
        if not self.tokens:
            raise FormulaError("Formula is empty")
        node = self.expression()
        kind, value = self.peek()
        if kind != "end":
            raise FormulaError(f"Unexpected {value!r} after end of expression")
        return node

    def expression(self) -> Node:
        node = self.term()
        while self.peek() in (("op", "+"), ("op", "-")):
            _, op = self.take()
            node = (op, node, self.term())
        return node

    def term(self) -> Node:
        node = self.factor()
        while self.peek() in (("op", "*"), ("op", "/")):
            _, op = self.take()
            node = (op, node, self.factor())
        return node

    def factor(self) -> Node:
        kind, value = self.take()
        if kind == "op" and value == "-":
            return ("neg", self.factor())
        if kind == "op" and value == "+":
            return self.factor()
        if kind == "number":
            return ("num", float(value))
        if kind == "name":
            if value not in FORMULA_VARIABLES:
                raise FormulaError(f"Unknown variable {value!r}")
            return ("var", value)
        if kind == "op" and value == "(":
            node = self.expression()
            if self.take() != ("op", ")"):
                raise FormulaError("Missing closing parenthesis")
            return node
        if kind == "end":
            raise FormulaError("Formula ends unexpectedly")
        raise FormulaError(f"Unexpected {value!r}")


def _evaluate(node: Node, variables: Mapping[str, float]) -> float:
    tag = node[0]
    if tag == "num":
        return node[1]
    if tag == "var":
        try:
            return float(variables[node[1]])
        except KeyError:
            raise FormulaError(f"No value supplied for {node[1]!r}") from None
    if tag == "neg":
        return -_evaluate(node[1], variables)

    left = _evaluate(node[1], variables)
    right = _evaluate(node[2], variables)
    if tag == "+":
        return left + right
    if tag == "-":
        return left - right
    if tag == "*":
        return left * right
    if right == 0:
        raise FormulaError("Division by zero")
    return left / right


@dataclass(frozen=True)
class Formula:
    text: str
    tree: Node

    def evaluate(self, variables: Mapping[str, float]) -> float:
        result = _evaluate(self.tree, variables)
        if not math.isfinite(result):
            raise FormulaError(f"Formula produced a non-finite result ({result})")
        return result


def compile_formula(text: str) -> Formula:
    return Formula(text=text, tree=_Parser(tokenize(text or "")).parse())


def evaluate_formula(text: str, variables: Dict[str, float]) -> float:
    return compile_formula(text).evaluate(variables)
