"""Pure pricing logic: series ordering, point lookup and msat conversion.

Nothing in this package performs I/O, so it can be exercised directly in tests
without any price source.
"""

__all__ = [
    "pricing",
]
