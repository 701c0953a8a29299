"""Markdown book preprocessor and HTTP server that embed Aquascope analyses of code blocks."""

__version__ = "0.1.0"

__all__ = ["__version__"]