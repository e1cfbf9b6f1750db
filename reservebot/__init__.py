"""Timed, contested single-shot reservation runner."""

__version__ = "0.1.0"
