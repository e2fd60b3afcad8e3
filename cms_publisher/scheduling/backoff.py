"""Retry backoff policy for failed publish attempts."""

from datetime import timedelta

DEFAULT_BACKOFF_BASE_SECONDS: float = 300.0
DEFAULT_BACKOFF_MAX_SECONDS: float = 3600.0


def backoff_delay(
    attempt_number: int,
    base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS,
    max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS,
) -> timedelta:
    """
    Delay before a schedule that failed *attempt_number* times is due again.

    Exponential: ``base_seconds * 2 ** (attempt_number - 1)``, capped at
    ``max_seconds``. A base of zero disables backoff entirely.

    Args:
        attempt_number: Failed attempts so far (1 after the first failure).
        base_seconds: Delay after the first failure.
        max_seconds: Upper bound for any single delay.

    Returns:
        The delay as a ``timedelta`` (never negative).
    """
    if attempt_number < 1 or base_seconds <= 0:
        return timedelta(0)
    # Cap the exponent so huge attempt counts cannot overflow
    exponent = min(attempt_number - 1, 32)
    seconds = min(base_seconds * (2 ** exponent), max_seconds)
    return timedelta(seconds=max(seconds, 0.0))


__all__ = [
    "backoff_delay",
    "DEFAULT_BACKOFF_BASE_SECONDS",
    "DEFAULT_BACKOFF_MAX_SECONDS",
]
