"""Dependency report codec, contract checks, and graph aggregation."""

from .codec import ReportFormatError, dumps_report, load_report, report_from_dict, report_to_dict
from .contract import ContractError, ContractIssue, check_report, validate_report
from .graph import (
    ModuleIndex,
    build_dependency_graph,
    dependents_of,
    find_cycles,
    function_key,
    reverse_adjacency,
)

__all__ = [
    "ContractError",
    "ContractIssue",
    "ModuleIndex",
    "ReportFormatError",
    "build_dependency_graph",
    "check_report",
    "dependents_of",
    "dumps_report",
    "find_cycles",
    "function_key",
    "load_report",
    "report_from_dict",
    "report_to_dict",
    "reverse_adjacency",
    "validate_report",
]
