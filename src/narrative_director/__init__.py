"""Narrative Director - orchestrates validated story generation for a simulated character."""

__version__ = "0.1.0"
