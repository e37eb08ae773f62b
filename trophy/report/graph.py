"""Adjacency aggregation over dependency report file entries."""

from __future__ import annotations

import posixpath
from collections import defaultdict, deque
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from ..logging import get_logger
from ..models import DependencyGraph, FileReport, includes_calls
from ..scanner import LANGUAGE_BY_SUFFIX

FUNCTION_KEY_SEPARATOR = "::"

# File stems that stand for their directory when imported as a module.
_PACKAGE_STEMS = {"__init__", "index", "mod"}

logger = get_logger("report.graph")


def function_key(path: str, name: str) -> str:
    """Return the function-level graph identifier for ``name`` defined in ``path``."""
    return f"{path}{FUNCTION_KEY_SEPARATOR}{name}"


class ModuleIndex:
    """Maps internal import identifiers onto analysed file keys.

    Services report internal imports either as file paths (``src/utils.py``)
    or as module identifiers (``src.utils``, ``./utils``). Both forms are
    matched against the analysed files by their extension-less path, first
    exactly and then by a unique trailing match.
    """

    def __init__(self, file_keys: Iterable[str]) -> None:
        self._keys = set(file_keys)
        self._by_module: Dict[str, List[str]] = defaultdict(list)
        for key in sorted(self._keys):
            for module in _module_paths(key):
                self._by_module[module].append(key)

    def resolve(self, identifier: str) -> Optional[str]:
        if identifier in self._keys:
            return identifier
        for module in _identifier_paths(identifier):
            exact = self._by_module.get(module)
            if exact and len(exact) == 1:
                return exact[0]
            suffix = f"/{module}"
            trailing = {
                key
                for candidate, keys in self._by_module.items()
                if candidate.endswith(suffix)
                for key in keys
            }
            if len(trailing) == 1:
                return trailing.pop()
        return None


def build_dependency_graph(files: Mapping[str, FileReport], depth: str) -> DependencyGraph:
    """Aggregate file-level and (depth permitting) function-level adjacency.

    File-level targets are resolved to analysed file keys where possible;
    identifiers that match no analysed file are kept as reported.
    """
    index = ModuleIndex(files)
    file_level: Dict[str, List[str]] = {}
    for path in sorted(files):
        targets: List[str] = []
        for identifier in files[path].imports.internal:
            resolved = index.resolve(identifier)
            if resolved is None:
                logger.debug("Internal import %s in %s matches no analysed file", identifier, path)
            targets.append(resolved or identifier)
        file_level[path] = _unique(target for target in targets if target != path)

    function_level: Dict[str, List[str]] = {}
    if includes_calls(depth):
        for path in sorted(files):
            for function in files[path].functions:
                key = function_key(path, function.name)
                targets = function_level.setdefault(key, [])
                for call in function.calls:
                    if call.target not in targets:
                        targets.append(call.target)

    return DependencyGraph(file_level=file_level, function_level=function_level)


def reverse_adjacency(adjacency: Mapping[str, Sequence[str]]) -> Dict[str, List[str]]:
    """Return a mapping from each identifier to the identifiers that depend on it."""
    reverse: Dict[str, List[str]] = defaultdict(list)
    for source in sorted(adjacency):
        for target in adjacency[source]:
            if source not in reverse[target]:
                reverse[target].append(source)
    return dict(reverse)


def dependents_of(adjacency: Mapping[str, Sequence[str]], changed: Iterable[str]) -> List[str]:
    """Return every identifier that transitively depends on one of ``changed``.

    The changed identifiers themselves are not included unless they depend on
    another changed identifier.
    """
    reverse = reverse_adjacency(adjacency)
    seeds = list(dict.fromkeys(changed))
    seen: Set[str] = set()
    queue = deque(seeds)
    while queue:
        current = queue.popleft()
        for dependent in reverse.get(current, []):
            if dependent in seen:
                continue
            seen.add(dependent)
            queue.append(dependent)
    return sorted(seen)


def find_cycles(adjacency: Mapping[str, Sequence[str]]) -> List[List[str]]:
    """Return the strongly connected components that form dependency cycles.

    Each cycle is sorted; single nodes only count when they depend on themselves.
    """
    index_of: Dict[str, int] = {}
    lowlink: Dict[str, int] = {}
    on_stack: Set[str] = set()
    stack: List[str] = []
    cycles: List[List[str]] = []
    counter = 0

    nodes = set(adjacency)
    for targets in adjacency.values():
        nodes.update(targets)

    for start in sorted(nodes):
        if start in index_of:
            continue
        # Iterative Tarjan so deep graphs do not hit the recursion limit.
        work = [(start, iter(adjacency.get(start, ())))]
        index_of[start] = lowlink[start] = counter
        counter += 1
        stack.append(start)
        on_stack.add(start)
        while work:
            node, children = work[-1]
            advanced = False
            for child in children:
                if child not in index_of:
                    index_of[child] = lowlink[child] = counter
                    counter += 1
                    stack.append(child)
                    on_stack.add(child)
                    work.append((child, iter(adjacency.get(child, ()))))
                    advanced = True
                    break
                if child in on_stack:
                    lowlink[node] = min(lowlink[node], index_of[child])
            if advanced:
                continue
            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])
            if lowlink[node] == index_of[node]:
                component: List[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                if len(component) > 1 or node in adjacency.get(node, ()):
                    cycles.append(sorted(component))

    return sorted(cycles)


def _unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


def _module_paths(key: str) -> List[str]:
    stem, _ = posixpath.splitext(key.replace("\\", "/"))
    paths = [stem]
    if posixpath.basename(stem) in _PACKAGE_STEMS and "/" in stem:
        paths.append(posixpath.dirname(stem))
    return paths


def _identifier_paths(identifier: str) -> List[str]:
    value = identifier.strip().replace("\\", "/")
    candidates: List[str] = []
    if "/" in value:
        parts = [part for part in posixpath.normpath(value).split("/") if part not in {"", ".", ".."}]
        joined = "/".join(parts)
        stem, suffix = posixpath.splitext(joined)
        candidates.append(stem if suffix.lower() in LANGUAGE_BY_SUFFIX else joined)
    else:
        dotted = value.lstrip(".")
        if dotted:
            stem, suffix = posixpath.splitext(dotted)
            if suffix.lower() in LANGUAGE_BY_SUFFIX:
                candidates.append(stem)
            candidates.append(dotted.replace(".", "/"))
    return [candidate for candidate in _unique(candidates) if candidate]


__all__ = [
    "ModuleIndex",
    "build_dependency_graph",
    "dependents_of",
    "find_cycles",
    "function_key",
    "reverse_adjacency",
]
