"""FastAPI application entrypoint for trophy service mode."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config import ConfigError
from ..orchestrator import Orchestrator
from ..plugin import ServiceError, ServiceNotConfiguredError, UnsupportedLanguageError
from ..report import ContractError, check_report, report_from_dict, report_to_dict
from ..specs import parse_spec
from ..testplan import plan_tests, render_test_module


class ValidateRequest(BaseModel):
    report: Dict[str, Any]
    root: Optional[str] = None
    depth: Optional[str] = None


class IssueModel(BaseModel):
    rule: str
    subject: str
    detail: str


class ValidateResponse(BaseModel):
    valid: bool
    issues: List[IssueModel] = Field(default_factory=list)


class PlanRequest(BaseModel):
    markdown: str
    path: str = "spec.md"
    render: bool = False


class PlannedTestModel(BaseModel):
    name: str
    requirement: str
    scenario: str
    steps: List[List[str]] = Field(default_factory=list)


class PlanResponse(BaseModel):
    title: str
    tests: List[PlannedTestModel]
    issues: List[str] = Field(default_factory=list)
    module: Optional[str] = None


class AnalyzeRequest(BaseModel):
    path: str
    language: Optional[str] = None
    depth: Optional[str] = None
    use_cache: Optional[bool] = None


class AnalyzeResponse(BaseModel):
    report: Dict[str, Any]
    issues: List[IssueModel] = Field(default_factory=list)
    cached: bool = False
    grammar_generated: bool = False


class HealthResponse(BaseModel):
    status: str


def _default_orchestrator() -> Orchestrator:
    return Orchestrator()


def create_app(
    orchestrator_factory: Callable[[], Orchestrator] = _default_orchestrator,
) -> FastAPI:
    """Create the FastAPI application exposing trophy operations."""

    app = FastAPI(title="Trophy Service", version="0.1.0")

    async def get_orchestrator() -> Orchestrator:
        return orchestrator_factory()

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/validate", response_model=ValidateResponse)
    async def validate(payload: ValidateRequest) -> ValidateResponse:
        report = report_from_dict(payload.report)
        root = Path(payload.root) if payload.root else None
        issues = check_report(report, root=root, depth=payload.depth)
        return ValidateResponse(
            valid=not issues,
            issues=[IssueModel(rule=i.rule, subject=i.subject, detail=i.detail) for i in issues],
        )

    @app.post("/plan", response_model=PlanResponse)
    async def plan(payload: PlanRequest) -> PlanResponse:
        document, issues = parse_spec(payload.markdown, payload.path)
        test_plan = plan_tests(document)
        return PlanResponse(
            title=test_plan.title,
            tests=[
                PlannedTestModel(
                    name=test.name,
                    requirement=test.requirement,
                    scenario=test.scenario,
                    steps=[[keyword, text] for keyword, text in test.steps],
                )
                for test in test_plan.tests
            ],
            issues=[str(issue) for issue in issues],
            module=render_test_module(test_plan) if payload.render else None,
        )

    @app.post("/analyze", response_model=AnalyzeResponse)
    async def analyze(
        payload: AnalyzeRequest,
        orchestrator: Orchestrator = Depends(get_orchestrator),
    ) -> AnalyzeResponse:
        loop = asyncio.get_running_loop()
        outcome = await loop.run_in_executor(
            None,
            lambda: orchestrator.run_analysis(
                payload.path,
                language=payload.language,
                depth=payload.depth,
                use_cache=payload.use_cache,
            ),
        )
        return AnalyzeResponse(
            report=report_to_dict(outcome.report),
            issues=[
                IssueModel(rule=i.rule, subject=i.subject, detail=i.detail)
                for i in outcome.issues
            ],
            cached=outcome.cached,
            grammar_generated=outcome.grammar is not None,
        )

    @app.exception_handler(FileNotFoundError)
    async def file_not_found_handler(_: Any, exc: FileNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(NotADirectoryError)
    async def not_a_directory_handler(_: Any, exc: NotADirectoryError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(UnsupportedLanguageError)
    async def unsupported_language_handler(_: Any, exc: UnsupportedLanguageError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "language": exc.language},
        )

    @app.exception_handler(ServiceNotConfiguredError)
    async def not_configured_handler(_: Any, exc: ServiceNotConfiguredError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(_: Any, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    for error_type in (ConfigError, ContractError, ServiceError):

        @app.exception_handler(error_type)
        async def runtime_error_handler(_: Any, exc: RuntimeError) -> JSONResponse:
            return JSONResponse(status_code=400, content={"detail": str(exc)})

    return app


def run_service(host: str = "127.0.0.1", port: int = 8000) -> None:  # pragma: no cover - integration path
    import uvicorn

    app = create_app()
    uvicorn.run(app, host=host, port=port)


__all__ = ["create_app", "run_service"]
