"""
Validation utilities for numeric samples.

Probe metrics come from injected functions and may carry infinities or NaN
(e.g., a division by a zero sample count on the remote side). Percentile and
health computations only accept finite values.
"""

import logging
import math
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


def is_valid_float(value: float) -> bool:
    """
    Check if a float value is finite and JSON-serializable.

    Examples
    --------
    >>> is_valid_float(42.5)
    True
    >>> is_valid_float(float('nan'))
    False
    """
    return math.isfinite(value)


def sanitize_float(
    value: Optional[float],
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
    default: Optional[float] = None,
) -> Optional[float]:
    """
    Sanitize a float value with validation and range checking.

    Parameters
    ----------
    value : float or None
        The value to sanitize. ``None`` yields ``default``.
    min_value : float, optional
        Minimum acceptable value (inclusive)
    max_value : float, optional
        Maximum acceptable value (inclusive)
    default : float, optional
        Value returned if validation fails.

    Examples
    --------
    >>> sanitize_float(float('inf'), default=0.0)
    0.0
    >>> sanitize_float(150.0, max_value=100.0, default=100.0)
    100.0
    """
    if value is None:
        return default
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if not is_valid_float(numeric):
        return default
    if min_value is not None and numeric < min_value:
        return default
    if max_value is not None and numeric > max_value:
        return default
    return numeric


def filter_valid_floats(
    values: Iterable[Optional[float]],
    log_invalid: bool = True,
    log_context: str = "unknown",
) -> Tuple[List[float], int]:
    """
    Filter values to only the finite floats.

    Returns
    -------
    tuple of (List[float], int)
        Tuple of (valid values, count of invalid values removed)

    Examples
    --------
    >>> filter_valid_floats([1.0, None, float('inf'), 3.0])
    ([1.0, 3.0], 2)
    """
    valid_values: List[float] = []
    invalid_count = 0

    for value in values:
        numeric = sanitize_float(value)
        if numeric is not None:
            valid_values.append(numeric)
        else:
            invalid_count += 1
            if log_invalid:
                logger.warning(
                    "%s.invalid_float_filtered",
                    log_context,
                    extra={"value": str(value), "type": type(value).__name__},
                )

    return valid_values, invalid_count
