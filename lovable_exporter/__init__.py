"""Capture virtualized Lovable chat threads and export them as Markdown, HTML or JSON."""

__version__ = "0.3.0"
