"""Bounded generate/evaluate/repair loops for long-form fiction."""

__version__ = "0.1.0"
