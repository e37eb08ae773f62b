"""OpenSpec scenario documents."""

from .discovery import SPEC_FILENAME, SpecsNotFoundError, discover_specs
from .parser import SpecIssue, load_spec, parse_spec

__all__ = [
    "SPEC_FILENAME",
    "SpecIssue",
    "SpecsNotFoundError",
    "discover_specs",
    "load_spec",
    "parse_spec",
]
