from __future__ import annotations

import math
import numbers
from decimal import ROUND_HALF_UP, Context, Decimal

_CENT = Decimal("0.01")
# Wide enough to quantize the largest finite float (about 1.8e308) to cents
_CONTEXT = Context(prec=400, rounding=ROUND_HALF_UP)


def round2(value: float) -> float:
    """
    Round to exactly two decimal places (half away from zero).

    Goes through the shortest repr of the float so 2.675 rounds to 2.68
    the way it reads, not the way it is stored in binary.
    """
    if not math.isfinite(value):
        raise ValueError(f"Cannot round non-finite value {value!r}")
    return float(Decimal(repr(float(value))).quantize(_CENT, context=_CONTEXT))


def is_valid_score(value) -> bool:
    """A score is a finite, non-negative real number (bools are not scores)."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return math.isfinite(value) and value >= 0
