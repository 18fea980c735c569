"""argparse ``type=`` callables that reject out-of-range numbers at parse time."""

from __future__ import annotations

import argparse


def _parse_number(value: str, cast, kind: str):
    try:
        return cast(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not {kind}")


def _positive_int(value: str) -> int:
    """Thread counts, permutations, task ids."""
    number = _parse_number(value, int, "an integer")
    if number < 1:
        raise argparse.ArgumentTypeError(f"{value} is not a positive integer")
    return number


def _probability(value: str) -> float:
    """Significance thresholds, strictly between 0 and 1."""
    number = _parse_number(value, float, "a number")
    if not 0 < number < 1:
        raise argparse.ArgumentTypeError(f"{value} is not a valid probability (must be in (0, 1))")
    return number


def _non_negative_float(value: str) -> float:
    """Absolute log2 fold-change cutoffs."""
    number = _parse_number(value, float, "a number")
    if number < 0:
        raise argparse.ArgumentTypeError(f"{value} is not a non-negative number")
    return number
