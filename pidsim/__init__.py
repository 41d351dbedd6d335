"""Closed-loop PID simulation engine."""

__version__ = "0.1.0"
