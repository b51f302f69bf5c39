"""
Rank-based percentiles for baseline capture.

For a sorted sample array of length n, percentile p (0 < p <= 1) is the
element at ``ceil(p * n) - 1``, clamped to ``[0, n - 1]``. No interpolation
is performed, so every reported percentile is an observed sample and
P50 <= P95 <= P99 holds for any non-empty input.
"""

import math
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from ..utils.validation import filter_valid_floats
from .models import PercentileTriple


def rank_index(p: float, n: int) -> int:
    """Index of percentile ``p`` in a sorted array of length ``n``.

    Examples
    --------
    >>> rank_index(0.5, 10)
    4
    >>> rank_index(0.99, 10)
    9
    >>> rank_index(0.0, 10)
    0
    """
    if n < 1:
        raise ValueError("n must be >= 1")
    return min(max(math.ceil(p * n) - 1, 0), n - 1)


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Rank percentile of an already sorted, non-empty sequence."""
    if not sorted_values:
        raise ValueError("cannot compute a percentile of an empty sample")
    if not 0.0 <= p <= 1.0:
        raise ValueError("p must be within [0, 1]")
    return sorted_values[rank_index(p, len(sorted_values))]


def percentile_triple(values: Iterable[Optional[float]], context: str = "baseline") -> PercentileTriple:
    """P50/P95/P99 of the finite values in ``values``.

    Raises
    ------
    ValueError
        If no finite value remains.
    """
    valid, _ = filter_valid_floats(values, log_context=context)
    if not valid:
        raise ValueError(f"no valid samples for {context}")
    ordered = sorted(valid)
    return PercentileTriple(
        p50=percentile(ordered, 0.50),
        p95=percentile(ordered, 0.95),
        p99=percentile(ordered, 0.99),
    )


def summarize_samples(samples: Mapping[str, List[Optional[float]]]) -> Dict[str, PercentileTriple]:
    """Percentile triples for every metric that has at least one valid sample."""
    summary: Dict[str, PercentileTriple] = {}
    for key, values in samples.items():
        present = [v for v in values if v is not None]
        if not present:
            continue
        try:
            summary[key] = percentile_triple(present, context=f"baseline.{key}")
        except ValueError:
            continue
    return summary
