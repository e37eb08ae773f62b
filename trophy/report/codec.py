"""JSON codec for dependency reports returned by the analysis service."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..models import (
    AnalysisInfo,
    CallSite,
    DependencyGraph,
    DependencyReport,
    ExportSet,
    FileReport,
    FunctionInfo,
    ImportSet,
    normalise_depth,
)


class ReportFormatError(ValueError):
    """Raised when a payload does not follow the dependency report shape."""

    def __init__(self, key_path: str, detail: str) -> None:
        super().__init__(f"{key_path}: {detail}")
        self.key_path = key_path
        self.detail = detail


def load_report(path: Path) -> DependencyReport:
    """Read a dependency report from a JSON file."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ReportFormatError("$", f"invalid JSON ({exc.msg} at line {exc.lineno})") from exc
    except UnicodeDecodeError as exc:
        raise ReportFormatError("$", f"not valid UTF-8 (byte {exc.start})") from exc
    return report_from_dict(payload)


def dumps_report(report: DependencyReport, *, indent: int | None = 2) -> str:
    return json.dumps(report_to_dict(report), indent=indent, sort_keys=False)


def report_from_dict(payload: Any) -> DependencyReport:
    """Build a :class:`DependencyReport` from decoded JSON."""
    data = _mapping(payload, "$")

    analysis_data = _mapping(data.get("analysis"), "analysis")
    path = analysis_data.get("path")
    if not isinstance(path, str) or not path:
        raise ReportFormatError("analysis.path", "expected a non-empty string")
    language = _optional_str(analysis_data.get("language"), "analysis.language")
    try:
        depth = normalise_depth(_optional_str(analysis_data.get("depth"), "analysis.depth"))
    except ValueError as exc:
        raise ReportFormatError("analysis.depth", str(exc)) from exc

    files_data = data.get("files", {})
    files: Dict[str, FileReport] = {}
    for file_path, entry in _mapping(files_data, "files").items():
        files[file_path] = _file_from_dict(file_path, entry)

    files_analyzed = analysis_data.get("files_analyzed", len(files))
    if isinstance(files_analyzed, bool) or not isinstance(files_analyzed, int):
        raise ReportFormatError("analysis.files_analyzed", "expected an integer")

    graph = _graph_from_dict(data.get("dependency_graph", {}))

    return DependencyReport(
        analysis=AnalysisInfo(
            path=path,
            language=language,
            files_analyzed=files_analyzed,
            depth=depth,
        ),
        files=files,
        dependency_graph=graph,
    )


def report_to_dict(report: DependencyReport) -> Dict[str, Any]:
    """Serialise a report back to the service's JSON shape."""
    return {
        "analysis": {
            "path": report.analysis.path,
            "language": report.analysis.language,
            "files_analyzed": report.analysis.files_analyzed,
            "depth": report.analysis.depth,
        },
        "files": {path: _file_to_dict(entry) for path, entry in report.files.items()},
        "dependency_graph": {
            "file_level": {k: list(v) for k, v in report.dependency_graph.file_level.items()},
            "function_level": {
                k: list(v) for k, v in report.dependency_graph.function_level.items()
            },
        },
    }


def _file_from_dict(file_path: str, entry: Any) -> FileReport:
    key = f"files[{file_path}]"
    data = _mapping(entry, key)

    imports_data = _mapping(data.get("imports", {}), f"{key}.imports")
    imports = ImportSet(
        external=_str_list(imports_data.get("external"), f"{key}.imports.external"),
        internal=_str_list(imports_data.get("internal"), f"{key}.imports.internal"),
    )

    exports_data = _mapping(data.get("exports", {}), f"{key}.exports")
    exports = ExportSet(
        functions=set(_str_list(exports_data.get("functions"), f"{key}.exports.functions")),
        classes=set(_str_list(exports_data.get("classes"), f"{key}.exports.classes")),
        constants=set(_str_list(exports_data.get("constants"), f"{key}.exports.constants")),
    )

    functions = _functions_from_payload(data.get("functions"), f"{key}.functions")
    return FileReport(path=file_path, imports=imports, exports=exports, functions=functions)


def _functions_from_payload(payload: Any, key: str) -> List[FunctionInfo]:
    if payload is None:
        return []
    # The service emits a name-keyed mapping; lists of named entries are accepted too.
    if isinstance(payload, Mapping):
        items = [(name, value) for name, value in payload.items()]
    elif isinstance(payload, list):
        items = []
        for index, value in enumerate(payload):
            entry = _mapping(value, f"{key}[{index}]")
            name = entry.get("name")
            if not isinstance(name, str) or not name:
                raise ReportFormatError(f"{key}[{index}].name", "expected a non-empty string")
            items.append((name, entry))
    else:
        raise ReportFormatError(key, "expected a mapping or a list")

    functions: List[FunctionInfo] = []
    for name, value in items:
        entry_key = f"{key}.{name}"
        entry = _mapping(value or {}, entry_key)
        calls: List[CallSite] = []
        for index, raw_call in enumerate(entry.get("calls") or []):
            calls.append(_call_from_payload(raw_call, f"{entry_key}.calls[{index}]"))
        functions.append(
            FunctionInfo(
                name=name,
                calls=calls,
                parameters=_str_list(entry.get("parameters"), f"{entry_key}.parameters"),
                returns=_optional_str(entry.get("returns"), f"{entry_key}.returns"),
            )
        )
    return functions


def _call_from_payload(raw: Any, key: str) -> CallSite:
    if isinstance(raw, str):
        return CallSite(target=raw)
    data = _mapping(raw, key)
    target = data.get("function", data.get("target"))
    if not isinstance(target, str) or not target:
        raise ReportFormatError(f"{key}.function", "expected a non-empty string")
    line = data.get("line")
    if line is not None and (isinstance(line, bool) or not isinstance(line, int)):
        raise ReportFormatError(f"{key}.line", "expected an integer")
    return CallSite(target=target, line=line)


def _graph_from_dict(payload: Any) -> DependencyGraph:
    data = _mapping(payload or {}, "dependency_graph")
    return DependencyGraph(
        file_level=_adjacency(data.get("file_level"), "dependency_graph.file_level"),
        function_level=_adjacency(
            data.get("function_level"), "dependency_graph.function_level"
        ),
    )


def _adjacency(payload: Any, key: str) -> Dict[str, List[str]]:
    if payload is None:
        return {}
    data = _mapping(payload, key)
    return {node: _str_list(targets, f"{key}.{node}") for node, targets in data.items()}


def _file_to_dict(entry: FileReport) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "imports": {
            "external": list(entry.imports.external),
            "internal": list(entry.imports.internal),
        },
        "exports": {
            "functions": sorted(entry.exports.functions),
            "classes": sorted(entry.exports.classes),
            "constants": sorted(entry.exports.constants),
        },
    }
    if entry.functions:
        payload["functions"] = {
            function.name: {
                "calls": [
                    {"function": call.target, "line": call.line} for call in function.calls
                ],
                "parameters": list(function.parameters),
                "returns": function.returns,
            }
            for function in entry.functions
        }
    return payload


def _mapping(value: Any, key: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ReportFormatError(key, "expected an object")
    for item in value:
        if not isinstance(item, str):
            raise ReportFormatError(key, "object keys must be strings")
    return value


def _str_list(value: Any, key: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str) or not isinstance(value, (list, tuple, set)):
        raise ReportFormatError(key, "expected a list of strings")
    items: List[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ReportFormatError(key, "expected a list of strings")
        items.append(item)
    return items


def _optional_str(value: Any, key: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ReportFormatError(key, "expected a string")
    return value


__all__ = [
    "ReportFormatError",
    "dumps_report",
    "load_report",
    "report_from_dict",
    "report_to_dict",
]
