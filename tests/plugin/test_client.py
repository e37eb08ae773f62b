"""Tests for the dependency analysis service client."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Mapping

import pytest

from tests._fixtures.project_builder import ProjectBuilder
from tests._fixtures.reports import function_report
from trophy.plugin import (
    DependencyServiceClient,
    ServiceError,
    UnsupportedLanguageError,
    analyze_with_fallback,
)

Handler = Callable[[Dict[str, Any]], Dict[str, Any]]


def _text(payload: Any) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": json.dumps(payload)}]}


class StubTransport:
    """In-memory transport answering requests through per-tool handlers."""

    def __init__(self, handlers: Mapping[str, Handler]) -> None:
        self.handlers = dict(handlers)
        self.sent: List[Dict[str, Any]] = []
        self.pending: List[Dict[str, Any]] = []
        self.closed = False

    def send(self, message: Mapping[str, Any]) -> None:
        message = dict(message)
        self.sent.append(message)
        if "id" not in message:
            return
        if message["method"] == "initialize":
            self.pending.append({"jsonrpc": "2.0", "method": "notifications/message"})
            self.pending.append(
                {"jsonrpc": "2.0", "id": message["id"], "result": {"serverInfo": {"name": "stub"}}}
            )
            return
        params = message["params"]
        reply = self.handlers[params["name"]](params["arguments"])
        self.pending.append({"jsonrpc": "2.0", "id": 999})
        self.pending.append({"jsonrpc": "2.0", "id": message["id"], **reply})

    def receive(self, timeout: float | None) -> Dict[str, Any]:
        return self.pending.pop(0)

    def close(self) -> None:
        self.closed = True

    def tool_calls(self) -> List[str]:
        return [m["params"]["name"] for m in self.sent if m.get("method") == "tools/call"]


def _client(transport: StubTransport) -> DependencyServiceClient:
    return DependencyServiceClient(lambda: transport, timeout=1)


def test_handshake_sends_initialized_notification() -> None:
    transport = StubTransport({})

    with _client(transport) as client:
        assert client.server_info == {"name": "stub"}

    methods = [message["method"] for message in transport.sent]
    assert methods == ["initialize", "notifications/initialized"]
    assert transport.closed


def test_analyze_decodes_text_content_and_fills_depth() -> None:
    payload = function_report()
    del payload["analysis"]["depth"]
    transport = StubTransport({"analyze_dependencies": lambda args: {"result": _text(payload)}})

    with _client(transport) as client:
        report = client.analyze("/work/app", language="python", depth="function")

    call = transport.sent[-1]["params"]
    assert call["arguments"] == {"path": "/work/app", "depth": "function", "language": "python"}
    assert report.analysis.depth == "function"
    assert set(report.files) == {"app/main.py", "app/utils.py"}


def test_structured_content_is_preferred() -> None:
    transport = StubTransport(
        {
            "list_languages": lambda args: {
                "result": {"content": [], "structuredContent": {"languages": ["rust", "go"]}}
            }
        }
    )

    with _client(transport) as client:
        assert client.list_languages() == ["go", "rust"]


def test_unsupported_language_error_code_is_classified() -> None:
    transport = StubTransport(
        {
            "analyze_dependencies": lambda args: {
                "error": {"code": -32001, "message": "nope", "data": {"language": "elixir"}}
            }
        }
    )

    with _client(transport) as client:
        with pytest.raises(UnsupportedLanguageError) as excinfo:
            client.analyze("/work/app")

    assert excinfo.value.language == "elixir"


def test_unsupported_language_message_is_classified() -> None:
    transport = StubTransport(
        {
            "analyze_dependencies": lambda args: {
                "result": {
                    "content": [{"type": "text", "text": "Unsupported language: zig"}],
                    "isError": True,
                }
            }
        }
    )

    with _client(transport) as client:
        with pytest.raises(UnsupportedLanguageError) as excinfo:
            client.analyze("/work/app", language="zig")

    assert excinfo.value.language == "zig"


def test_other_errors_stay_service_errors() -> None:
    transport = StubTransport(
        {"analyze_dependencies": lambda args: {"error": {"code": -32602, "message": "bad path"}}}
    )

    with _client(transport) as client:
        with pytest.raises(ServiceError) as excinfo:
            client.analyze("/missing")

    assert not isinstance(excinfo.value, UnsupportedLanguageError)
    assert excinfo.value.code == -32602


def test_fallback_generates_grammar_and_retries_once(tmp_path) -> None:
    attempts: List[Dict[str, Any]] = []
    sample = tmp_path / "lib.ex"
    sample.write_text("defmodule Lib do\nend\n", encoding="utf-8")

    def analyze(args: Dict[str, Any]) -> Dict[str, Any]:
        attempts.append(args)
        if len(attempts) == 1:
            return {"error": {"code": -32001, "message": "Unsupported language: elixir"}}
        return {"result": _text(function_report())}

    transport = StubTransport(
        {
            "analyze_dependencies": analyze,
            "generate_grammar": lambda args: {
                "result": _text({"language": args["language"], "needs_refinement": True, "notes": "heuristic"})
            },
        }
    )

    with _client(transport) as client:
        report, grammar = analyze_with_fallback(
            client,
            "/work/app",
            language="elixir",
            depth="function",
            samples_for=lambda language: [sample],
        )

    assert transport.tool_calls() == ["analyze_dependencies", "generate_grammar", "analyze_dependencies"]
    assert grammar is not None
    assert grammar.needs_refinement
    assert grammar.notes == ["heuristic"]
    assert report.analysis.files_analyzed == 2


def test_fallback_does_not_loop_when_retry_still_fails(tmp_path) -> None:
    sample = tmp_path / "lib.ex"
    sample.write_text("x\n", encoding="utf-8")
    transport = StubTransport(
        {
            "analyze_dependencies": lambda args: {
                "error": {"code": -32001, "message": "still unsupported"}
            },
            "generate_grammar": lambda args: {"result": _text({"language": "elixir"})},
        }
    )

    with _client(transport) as client:
        with pytest.raises(UnsupportedLanguageError):
            analyze_with_fallback(
                client, "/work/app", language="elixir", samples_for=lambda language: [sample]
            )

    assert transport.tool_calls().count("generate_grammar") == 1
    assert transport.tool_calls().count("analyze_dependencies") == 2


def test_fallback_without_samples_raises() -> None:
    transport = StubTransport(
        {"analyze_dependencies": lambda args: {"error": {"code": -32001, "message": "unsupported"}}}
    )

    with _client(transport) as client:
        with pytest.raises(UnsupportedLanguageError, match="no sample files"):
            analyze_with_fallback(client, "/work/app", language="elixir", samples_for=lambda language: [])

    assert "generate_grammar" not in transport.tool_calls()


def test_stdio_client_talks_to_a_real_subprocess(project_builder: ProjectBuilder) -> None:
    project_builder.write(
        {
            "app/main.py": """
                import requests
                from helpers import fetch

                def main(argv):
                    fetch(argv)
            """,
            "app/helpers.py": """
                def fetch(url):
                    return url
            """,
        }
    )
    project_builder.configure_service()
    root = project_builder.path()

    with DependencyServiceClient.from_settings(root, "tree-sitter", timeout=30) as client:
        report = client.analyze(root, depth="function")
        languages = client.list_languages()

    assert languages == ["python"]
    main = report.files["app/main.py"]
    assert main.imports.external == ["requests"]
    assert main.imports.internal == ["app/helpers.py"]
    assert [call.target for call in main.functions[0].calls] == ["fetch"]


def test_fallback_picks_a_candidate_when_the_service_names_no_language(tmp_path) -> None:
    sample = tmp_path / "lib.ex"
    sample.write_text("defmodule Lib do\nend\n", encoding="utf-8")
    attempts: List[Dict[str, Any]] = []
    generated: List[str] = []

    def analyze(args: Dict[str, Any]) -> Dict[str, Any]:
        attempts.append(args)
        if len(attempts) == 1:
            return {"error": {"code": -32001, "message": "grammar missing"}}
        return {"result": _text(function_report())}

    def generate(args: Dict[str, Any]) -> Dict[str, Any]:
        generated.append(args["language"])
        return {"result": _text({"language": args["language"]})}

    transport = StubTransport({"analyze_dependencies": analyze, "generate_grammar": generate})

    with _client(transport) as client:
        report, grammar = analyze_with_fallback(
            client,
            "/work/app",
            samples_for=lambda language: [sample] if language == "elixir" else [],
            candidates=["ruby", "elixir"],
        )

    assert generated == ["elixir"]
    assert "language" not in attempts[0]
    assert attempts[1]["language"] == "elixir"
    assert grammar is not None and grammar.language == "elixir"
    assert report.analysis.files_analyzed == 2


def test_fallback_without_language_or_candidates_reraises() -> None:
    transport = StubTransport(
        {"analyze_dependencies": lambda args: {"error": {"code": -32001, "message": "grammar missing"}}}
    )

    with _client(transport) as client:
        with pytest.raises(UnsupportedLanguageError):
            analyze_with_fallback(
                client, "/work/app", samples_for=lambda language: [], candidates=["ruby"]
            )

    assert "generate_grammar" not in transport.tool_calls()
