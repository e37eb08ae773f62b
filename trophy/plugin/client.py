"""JSON-RPC client for the external tree-sitter dependency analysis service."""

from __future__ import annotations

import itertools
import json
import queue
import re
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from ..logging import get_logger
from ..models import DependencyReport, normalise_depth
from ..report.codec import report_from_dict
from .settings import ServerLaunch, load_server_launch

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "trophy", "version": "0.1.0"}

TOOL_ANALYZE = "analyze_dependencies"
TOOL_GENERATE_GRAMMAR = "generate_grammar"
TOOL_LIST_LANGUAGES = "list_languages"

# Application error code the service uses when no grammar is registered.
UNSUPPORTED_LANGUAGE_CODE = -32001

_UNSUPPORTED_PATTERN = re.compile(
    r"(unsupported language|language (?:is )?not supported|no (?:parser|grammar))",
    re.IGNORECASE,
)

logger = get_logger("plugin.client")


class ServiceError(RuntimeError):
    """Raised when the service returns an error or breaks the protocol."""

    def __init__(self, message: str, *, code: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class UnsupportedLanguageError(ServiceError):
    """Raised when the service has no grammar registered for the requested language."""

    def __init__(self, language: str | None, message: str | None = None) -> None:
        detail = message or f"Language '{language}' is not supported by the analysis service"
        super().__init__(detail, code=UNSUPPORTED_LANGUAGE_CODE, data={"language": language})
        self.language = language


class Transport(Protocol):
    """Message channel to a running service."""

    def send(self, message: Mapping[str, Any]) -> None:
        """Write one JSON-RPC message."""

    def receive(self, timeout: float | None) -> Dict[str, Any]:
        """Block for the next JSON-RPC message."""

    def close(self) -> None:
        """Release the channel and any process behind it."""


class StdioTransport:
    """Runs the service as a subprocess and exchanges newline-delimited JSON."""

    def __init__(self, launch: ServerLaunch) -> None:
        self._launch = launch
        argv = launch.argv()
        logger.debug("Starting %s service: %s", launch.name, " ".join(argv))
        try:
            self._process = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=launch.environment(),
                cwd=str(launch.cwd) if launch.cwd else None,
                text=True,
                encoding="utf-8",
                bufsize=1,
            )
        except OSError as exc:
            raise ServiceError(f"Failed to launch '{launch.name}' service ({argv[0]}): {exc}") from exc
        self._messages: "queue.Queue[Optional[str]]" = queue.Queue()
        self._stderr: List[str] = []
        self._reader = threading.Thread(target=self._pump_stdout, daemon=True)
        self._reader.start()
        self._stderr_reader = threading.Thread(target=self._pump_stderr, daemon=True)
        self._stderr_reader.start()

    def send(self, message: Mapping[str, Any]) -> None:
        if self._process.stdin is None or self._process.poll() is not None:
            raise ServiceError(self._exit_message("Service is not running"))
        try:
            self._process.stdin.write(json.dumps(message) + "\n")
            self._process.stdin.flush()
        except (BrokenPipeError, OSError) as exc:
            raise ServiceError(self._exit_message(f"Failed to write to service: {exc}")) from exc

    def receive(self, timeout: float | None) -> Dict[str, Any]:
        while True:
            try:
                line = self._messages.get(timeout=timeout)
            except queue.Empty as exc:
                raise ServiceError(f"Timed out after {timeout}s waiting for the service") from exc
            if line is None:
                raise ServiceError(self._exit_message("Service closed its output stream"))
            stripped = line.strip()
            if not stripped:
                continue
            try:
                payload = json.loads(stripped)
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON service output: %s", stripped)
                continue
            if isinstance(payload, dict):
                return payload
            logger.debug("Ignoring non-object service message: %s", stripped)

    def close(self) -> None:
        process = self._process
        if process.stdin is not None and not process.stdin.closed:
            try:
                process.stdin.close()
            except OSError:
                pass
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait(timeout=5)

    def _pump_stdout(self) -> None:
        stream = self._process.stdout
        if stream is None:
            self._messages.put(None)
            return
        for line in stream:
            self._messages.put(line)
        self._messages.put(None)

    def _pump_stderr(self) -> None:
        stream = self._process.stderr
        if stream is None:
            return
        for line in stream:
            self._stderr.append(line.rstrip())
            logger.debug("[%s] %s", self._launch.name, line.rstrip())

    def _exit_message(self, prefix: str) -> str:
        code = self._process.poll()
        tail = " | ".join(self._stderr[-3:])
        detail = f" (exit code {code})" if code is not None else ""
        return f"{prefix}{detail}{': ' + tail if tail else ''}"


@dataclass
class GrammarResult:
    """Outcome of a grammar-generation request."""

    language: str
    grammar_path: Optional[str] = None
    needs_refinement: bool = False
    notes: List[str] = field(default_factory=list)


class DependencyServiceClient:
    """Talks to the dependency analysis service through its plugin protocol."""

    def __init__(
        self,
        transport_factory: Callable[[], Transport],
        *,
        timeout: float | None = 60.0,
    ) -> None:
        self._transport_factory = transport_factory
        self._transport: Transport | None = None
        self._timeout = timeout
        self._ids = itertools.count(1)
        self.server_info: Dict[str, Any] = {}

    @classmethod
    def from_settings(
        cls,
        root: Path,
        name: str,
        *,
        settings_file: Path | None = None,
        timeout: float | None = 60.0,
    ) -> "DependencyServiceClient":
        launch = load_server_launch(root, name, settings_file=settings_file)
        return cls(lambda: StdioTransport(launch), timeout=timeout)

    def __enter__(self) -> "DependencyServiceClient":
        self.start()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def start(self) -> None:
        if self._transport is not None:
            return
        self._transport = self._transport_factory()
        try:
            result = self._request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": CLIENT_INFO,
                },
            )
        except ServiceError:
            self.close()
            raise
        self.server_info = result.get("serverInfo", {}) if isinstance(result, dict) else {}
        self._transport.send({"jsonrpc": "2.0", "method": "notifications/initialized"})
        logger.debug("Connected to analysis service %s", self.server_info or "(unnamed)")

    def close(self) -> None:
        if self._transport is None:
            return
        transport, self._transport = self._transport, None
        transport.close()

    # ------------------------------------------------------------------
    # Operations

    def analyze(
        self,
        path: str | Path,
        *,
        language: str | None = None,
        depth: str = "file",
    ) -> DependencyReport:
        """Request a dependency report for ``path``."""
        depth = normalise_depth(depth)
        arguments: Dict[str, Any] = {"path": str(path), "depth": depth}
        if language:
            arguments["language"] = language
        payload = self.call_tool(TOOL_ANALYZE, arguments, language=language)
        if isinstance(payload, dict):
            analysis = payload.get("analysis")
            # The service does not always echo the requested depth.
            if isinstance(analysis, dict) and "depth" not in analysis:
                payload = {**payload, "analysis": {**analysis, "depth": depth}}
        return report_from_dict(payload)

    def generate_grammar(self, language: str, samples: Sequence[Path]) -> GrammarResult:
        """Ask the service to derive a grammar for ``language`` from sample files."""
        payload = self.call_tool(
            TOOL_GENERATE_GRAMMAR,
            {"language": language, "samples": [str(sample) for sample in samples]},
        )
        if not isinstance(payload, dict):
            payload = {"notes": [str(payload)]} if payload else {}
        notes = payload.get("notes") or []
        if isinstance(notes, str):
            notes = [notes]
        return GrammarResult(
            language=str(payload.get("language") or language),
            grammar_path=payload.get("grammar_path") if isinstance(payload.get("grammar_path"), str) else None,
            needs_refinement=bool(payload.get("needs_refinement", False)),
            notes=[str(note) for note in notes],
        )

    def list_languages(self) -> List[str]:
        payload = self.call_tool(TOOL_LIST_LANGUAGES, {})
        if isinstance(payload, dict):
            payload = payload.get("languages", [])
        if not isinstance(payload, list):
            raise ServiceError("list_languages returned an unexpected payload", data=payload)
        return sorted(str(item) for item in payload)

    def call_tool(
        self,
        name: str,
        arguments: Mapping[str, Any],
        *,
        language: str | None = None,
    ) -> Any:
        """Invoke a service tool and decode the JSON carried in its text content."""
        try:
            result = self._request("tools/call", {"name": name, "arguments": dict(arguments)})
        except ServiceError as exc:
            raise _classify(exc, language) from None
        if not isinstance(result, dict):
            raise ServiceError(f"{name} returned a malformed result", data=result)

        text = _content_text(result)
        if result.get("isError"):
            raise _classify(ServiceError(text or f"{name} failed"), language)
        if "structuredContent" in result:
            return result["structuredContent"]
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    # ------------------------------------------------------------------
    # Internal helpers

    def _request(self, method: str, params: Mapping[str, Any]) -> Any:
        if self._transport is None:
            self.start()
        transport = self._transport
        assert transport is not None
        request_id = next(self._ids)
        transport.send({"jsonrpc": "2.0", "id": request_id, "method": method, "params": dict(params)})
        while True:
            message = transport.receive(self._timeout)
            if "id" not in message or message.get("method"):
                logger.debug("Service notification: %s", message.get("method"))
                continue
            if message.get("id") != request_id:
                logger.debug("Ignoring response for unknown request id %s", message.get("id"))
                continue
            error = message.get("error")
            if error is not None:
                if not isinstance(error, dict):
                    raise ServiceError(f"{method} failed: {error}")
                raise ServiceError(
                    str(error.get("message") or f"{method} failed"),
                    code=error.get("code") if isinstance(error.get("code"), int) else None,
                    data=error.get("data"),
                )
            return message.get("result")


def analyze_with_fallback(
    client: DependencyServiceClient,
    path: str | Path,
    *,
    language: str | None = None,
    depth: str = "file",
    samples_for: Callable[[str], Sequence[Path]],
    candidates: Sequence[str] = (),
) -> Tuple[DependencyReport, Optional[GrammarResult]]:
    """Analyse ``path``, generating a grammar and retrying once if the language is unsupported.

    When the service does not name the unsupported language and none was
    requested, the first of ``candidates`` with sample files is assumed.
    """
    try:
        return client.analyze(path, language=language, depth=depth), None
    except UnsupportedLanguageError as exc:
        missing = exc.language or language
        if not missing:
            missing = next((lang for lang in candidates if samples_for(lang)), None)
            if missing is None:
                raise
            logger.info("Service did not name the unsupported language; assuming %s", missing)
        logger.info("No grammar registered for %s; generating one from samples", missing)
        samples = list(samples_for(missing))
        if not samples:
            raise UnsupportedLanguageError(
                missing, f"Language '{missing}' is unsupported and no sample files were found"
            ) from exc
        grammar = client.generate_grammar(missing, samples)
        if grammar.needs_refinement:
            logger.warning(
                "Generated %s grammar may need manual refinement%s",
                missing,
                f": {'; '.join(grammar.notes)}" if grammar.notes else "",
            )
        return client.analyze(path, language=language or missing, depth=depth), grammar


def _content_text(result: Mapping[str, Any]) -> str:
    content = result.get("content")
    if not isinstance(content, list):
        return ""
    parts = [
        str(item.get("text", ""))
        for item in content
        if isinstance(item, dict) and item.get("type") == "text"
    ]
    return "".join(parts)


def _classify(error: ServiceError, language: str | None) -> ServiceError:
    if isinstance(error, UnsupportedLanguageError):
        return error
    message = str(error)
    if error.code == UNSUPPORTED_LANGUAGE_CODE or _UNSUPPORTED_PATTERN.search(message):
        reported = language
        if isinstance(error.data, dict) and isinstance(error.data.get("language"), str):
            reported = error.data["language"]
        return UnsupportedLanguageError(reported, message)
    return error


__all__ = [
    "DependencyServiceClient",
    "GrammarResult",
    "ServiceError",
    "StdioTransport",
    "Transport",
    "UnsupportedLanguageError",
    "analyze_with_fallback",
]
