"""Code map document model, parsing, and rendering."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .markers import MarkerManager, SectionContent

SECTION_TITLES: Dict[str, str] = {
    "overview": "Overview",
    "structure": "Structure",
    "entry_points": "Entry Points",
    "dependencies": "Dependencies",
    "data_flow": "Data Flow",
    "external_dependencies": "External Dependencies",
}
SECTION_ORDER: Tuple[str, ...] = tuple(SECTION_TITLES)

# Sections trophy may rewrite from a dependency report.
MANAGED_SECTIONS: Tuple[str, ...] = ("dependencies", "external_dependencies")

_HEADING = re.compile(r"^##\s+(?P<title>.+?)\s*#*\s*$")
_TITLE = re.compile(r"^#\s+(?P<title>.+?)\s*#*\s*$")
_BULLET = re.compile(r"^\s*[-*+]\s+(?P<item>.+?)\s*$")
_CODE_SPAN = re.compile(r"`([^`]+)`")
_EDGE = re.compile(r"^(?P<source>.+?)\s*(?:->|→|=>)\s*(?P<targets>.+)$")


@dataclass
class CodeMap:
    """Architecture summary kept alongside the code."""

    title: str = "Code Map"
    sections: Dict[str, str] = field(default_factory=dict)
    extra_sections: List[Tuple[str, str]] = field(default_factory=list)

    def section(self, key: str) -> str:
        return self.sections.get(key, "")

    def items(self, key: str) -> List[str]:
        """Return bullet items in a section, preferring the first code span of each."""
        return [_item_name(item) for item in _bullets(self.section(key))]

    def edges(self) -> Dict[str, List[str]]:
        """Return ``source -> targets`` edges listed in the dependencies section."""
        edges: Dict[str, List[str]] = {}
        for item in _bullets(self.section("dependencies")):
            match = _EDGE.match(item)
            if not match:
                continue
            source = _item_name(match.group("source"))
            targets = [
                _item_name(part)
                for part in re.split(r",\s*", match.group("targets"))
                if part.strip()
            ]
            bucket = edges.setdefault(source, [])
            bucket.extend(target for target in targets if target not in bucket)
        return edges


def section_key(title: str) -> Optional[str]:
    normalised = re.sub(r"[^a-z0-9]+", "_", title.lower()).strip("_")
    for key, known in SECTION_TITLES.items():
        if normalised == key or normalised == re.sub(r"[^a-z0-9]+", "_", known.lower()):
            return key
    return None


def parse_codemap(markdown: str) -> CodeMap:
    """Parse a code map, mapping ``##`` headings onto known section keys."""
    markers = MarkerManager()
    codemap = CodeMap()
    current_title: Optional[str] = None
    buffer: List[str] = []
    in_code = False

    def _flush() -> None:
        if current_title is None:
            return
        body = markers.strip("\n".join(buffer)).strip()
        key = section_key(current_title)
        if key is None:
            codemap.extra_sections.append((current_title, body))
        else:
            codemap.sections[key] = body

    for line in markdown.splitlines():
        stripped = line.strip()
        if stripped.startswith("```"):
            in_code = not in_code
        if not in_code:
            heading = _HEADING.match(stripped)
            if heading:
                _flush()
                current_title = heading.group("title")
                buffer = []
                continue
            title = _TITLE.match(stripped)
            if title and current_title is None:
                codemap.title = title.group("title")
                continue
        if current_title is not None:
            buffer.append(line)
    _flush()
    return codemap


def render_codemap(codemap: CodeMap) -> str:
    """Render the code map with managed markers around report-derived sections."""
    markers = MarkerManager()
    lines: List[str] = [f"# {codemap.title}", ""]
    for key in SECTION_ORDER:
        title = SECTION_TITLES[key]
        body = codemap.section(key).strip() or "_Not documented yet._"
        lines.append(f"## {title}")
        lines.append("")
        if key in MANAGED_SECTIONS:
            lines.append(markers.wrap(SectionContent(name=key, title=title, body=body)))
        else:
            lines.append(body)
        lines.append("")
    for title, body in codemap.extra_sections:
        lines.append(f"## {title}")
        lines.append("")
        lines.append(body.strip())
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def _bullets(body: str) -> List[str]:
    items: List[str] = []
    in_code = False
    for line in body.splitlines():
        if line.strip().startswith("```"):
            in_code = not in_code
            continue
        if in_code:
            continue
        match = _BULLET.match(line)
        if match:
            items.append(match.group("item"))
    return items


def _item_name(item: str) -> str:
    span = _CODE_SPAN.search(item)
    if span:
        return span.group(1).strip()
    # Plain items may carry a trailing description ("requests - HTTP client").
    return re.split(r"\s+[-–—:]\s+|:\s", item, maxsplit=1)[0].strip()


__all__ = [
    "CodeMap",
    "MANAGED_SECTIONS",
    "SECTION_ORDER",
    "SECTION_TITLES",
    "parse_codemap",
    "render_codemap",
    "section_key",
]
