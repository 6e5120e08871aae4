"""Pure business rules for GarageBoard (no I/O)."""

__all__ = [
    "estimator",
    "transitions",
]
