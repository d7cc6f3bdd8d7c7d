"""Span labeling and highlight rendering for prompt editors."""

__version__ = "0.1.0"
