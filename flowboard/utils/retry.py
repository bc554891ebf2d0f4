from __future__ import annotations


def compute_backoff(attempt: int, delay: float = 1.0, backoff: str = "exponential") -> float:
    """Seconds to wait before retry number ``attempt`` (1-based)."""
    if attempt < 1:
        return 0.0
    if backoff == "constant":
        return delay
    if backoff == "linear":
        return delay * attempt
    if backoff == "exponential":
        return delay * 2 ** (attempt - 1)
    raise ValueError(f"Unknown backoff mode: {backoff}")
