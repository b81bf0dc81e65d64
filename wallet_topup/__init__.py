"""JazzCash wallet top-up engine: idempotent initiation, signing and reconciliation."""

__version__ = "1.0.0"
