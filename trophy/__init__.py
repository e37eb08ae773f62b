"""Integration-first testing helpers: OpenSpec scenarios, dependency reports, code maps."""

__version__ = "0.1.0"
