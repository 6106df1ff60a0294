"""Scoring and ranking engine for multi-judge, multi-segment competitions."""

__version__ = "0.1.0"
