"""Code map documents and their synchronisation with dependency reports."""

from .document import CodeMap, SECTION_TITLES, parse_codemap, render_codemap
from .markers import MarkerManager, SectionContent
from .sync import (
    Discrepancy,
    check_codemap_file,
    compare_with_report,
    render_dependency_sections,
    update_from_report,
)

__all__ = [
    "CodeMap",
    "Discrepancy",
    "MarkerManager",
    "SECTION_TITLES",
    "SectionContent",
    "check_codemap_file",
    "compare_with_report",
    "parse_codemap",
    "render_codemap",
    "render_dependency_sections",
    "update_from_report",
]
