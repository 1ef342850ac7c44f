"""Run external AI coding assistants and normalize their streamed answers."""

__version__ = "0.1.0"
