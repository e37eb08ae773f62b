"""Tests for the FastAPI service mode."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pytest

try:
    from fastapi.testclient import TestClient
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    pytest.skip("fastapi not installed", allow_module_level=True)

from tests._fixtures.reports import file_report, function_report
from trophy.orchestrator import AnalysisOutcome
from trophy.plugin import ServiceNotConfiguredError, UnsupportedLanguageError
from trophy.report import report_from_dict
from trophy.service import create_app


class _StubOrchestrator:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.error: Exception | None = None

    def run_analysis(
        self,
        path: str,
        *,
        language: str | None = None,
        depth: str | None = None,
        use_cache: bool | None = None,
    ) -> AnalysisOutcome:
        self.calls.append({"path": path, "language": language, "depth": depth, "use_cache": use_cache})
        if self.error is not None:
            raise self.error
        return AnalysisOutcome(report=report_from_dict(file_report()), cached=True)


@pytest.fixture
def orchestrator() -> _StubOrchestrator:
    return _StubOrchestrator()


@pytest.fixture
def client(orchestrator: _StubOrchestrator) -> TestClient:
    return TestClient(create_app(lambda: orchestrator))


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_validate_endpoint_reports_issues(client: TestClient) -> None:
    payload = function_report()
    payload["files"]["app/main.py"]["imports"]["internal"].append("requests")

    response = client.post("/validate", json={"report": payload})

    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is False
    assert [issue["rule"] for issue in body["issues"]] == ["imports-disjoint"]


def test_validate_endpoint_accepts_valid_report(client: TestClient) -> None:
    response = client.post("/validate", json={"report": function_report(), "depth": "function"})

    assert response.json() == {"valid": True, "issues": []}


def test_validate_endpoint_rejects_malformed_report(client: TestClient) -> None:
    response = client.post("/validate", json={"report": {"files": {}}})

    assert response.status_code == 400
    assert "analysis" in response.json()["detail"]


def test_plan_endpoint_renders_module(client: TestClient) -> None:
    markdown = (
        "# Search\n\n### Requirement: Query\n#### Scenario: Empty result\n"
        "- **WHEN** nothing matches\n- **THEN** an empty list is returned\n"
    )

    response = client.post("/plan", json={"markdown": markdown, "render": True})

    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Search"
    assert body["tests"][0]["name"] == "test_query_empty_result"
    assert body["tests"][0]["steps"] == [["WHEN", "nothing matches"], ["THEN", "an empty list is returned"]]
    assert "def test_query_empty_result() -> None:" in body["module"]


def test_analyze_endpoint_uses_orchestrator(client: TestClient, orchestrator: _StubOrchestrator, tmp_path: Path) -> None:
    response = client.post("/analyze", json={"path": str(tmp_path), "depth": "file", "use_cache": False})

    assert response.status_code == 200
    body = response.json()
    assert body["cached"] is True
    assert body["grammar_generated"] is False
    assert body["report"]["analysis"]["depth"] == "file"
    assert orchestrator.calls == [
        {"path": str(tmp_path), "language": None, "depth": "file", "use_cache": False}
    ]


@pytest.mark.parametrize(
    "error, status",
    [
        (UnsupportedLanguageError("zig"), 422),
        (ServiceNotConfiguredError("no server"), 503),
        (FileNotFoundError("missing"), 404),
        (NotADirectoryError("Project path is not a directory: /work"), 400),
        (ValueError("Unknown analysis depth"), 400),
    ],
)
def test_analyze_endpoint_maps_errors(
    client: TestClient, orchestrator: _StubOrchestrator, error: Exception, status: int
) -> None:
    orchestrator.error = error

    response = client.post("/analyze", json={"path": "/work"})

    assert response.status_code == status
    if isinstance(error, UnsupportedLanguageError):
        assert response.json()["language"] == "zig"
