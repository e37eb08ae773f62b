"""Workflow orchestration for analysis, test planning, and code map checks."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .codemap import Discrepancy, compare_with_report, parse_codemap, update_from_report
from .config import TrophyConfig, load_config
from .grammars import GrammarRegistry, SampleCheck, collect_samples
from .logging import get_logger
from .models import DependencyReport, ProjectManifest, SpecDocument, normalise_depth
from .plugin import DependencyServiceClient, GrammarResult, analyze_with_fallback
from .report import ContractIssue, build_dependency_graph, check_report, dependents_of
from .scanner import ProjectScanner, detect_role, fingerprint
from .specs import SpecIssue, discover_specs, load_spec
from .stores import ReportCache, cache_key
from .testplan import (
    PlannedTest,
    TestPlan,
    assign_module_names,
    coverage_gaps,
    plan_tests,
    write_test_module,
)

ClientFactory = Callable[[TrophyConfig], DependencyServiceClient]


@dataclass
class AnalysisOutcome:
    """Result of one dependency analysis run."""

    report: DependencyReport
    issues: List[ContractIssue] = field(default_factory=list)
    grammar: Optional[GrammarResult] = None
    cached: bool = False


@dataclass
class GrammarOutcome:
    """Result of a grammar-generation request plus local sample checks."""

    grammar: GrammarResult
    samples: List[Path]
    checks: List[SampleCheck] = field(default_factory=list)


@dataclass
class PlanOutcome:
    """Planned tests for every spec in a project."""

    plans: List[TestPlan]
    issues: List[SpecIssue] = field(default_factory=list)
    written: List[Path] = field(default_factory=list)
    gaps: Dict[str, List[PlannedTest]] = field(default_factory=dict)


@dataclass
class ImpactOutcome:
    """Files affected by a change, derived from the file-level dependency graph."""

    changed: List[str]
    dependents: List[str] = field(default_factory=list)
    tests: List[str] = field(default_factory=list)


def _default_client(config: TrophyConfig) -> DependencyServiceClient:
    return DependencyServiceClient.from_settings(
        config.root,
        config.service.name,
        settings_file=config.service.settings_file,
        timeout=config.service.timeout,
    )


class Orchestrator:
    """Coordinates the analysis, planning, and code map workflows."""

    def __init__(
        self,
        scanner: ProjectScanner | None = None,
        client_factory: ClientFactory | None = None,
        grammars: GrammarRegistry | None = None,
    ) -> None:
        self.scanner = scanner or ProjectScanner()
        self.client_factory = client_factory or _default_client
        self.grammars = grammars or GrammarRegistry()
        self.logger = get_logger("orchestrator")

    # ------------------------------------------------------------------
    # Dependency analysis

    def run_analysis(
        self,
        path: str | Path,
        *,
        language: str | None = None,
        depth: str | None = None,
        use_cache: bool | None = None,
    ) -> AnalysisOutcome:
        root = self._resolve_root(path)
        config = load_config(root)
        depth = normalise_depth(depth or config.analysis.depth)
        language = language or config.analysis.language
        cache_enabled = config.analysis.cache if use_cache is None else use_cache

        manifest = self.scanner.scan(root)
        digest = fingerprint(manifest)
        key = cache_key(str(root), language, depth)
        cache = ReportCache(config.cache_path if cache_enabled else None)
        if cache_enabled:
            cached = cache.get(key, fingerprint=digest)
            if cached is not None:
                self.logger.info("Using cached %s-depth report for %s", depth, root)
                return AnalysisOutcome(report=cached, cached=True)

        self._warn_unsupported(manifest, language)

        client = self.client_factory(config)
        with client:
            report, grammar = analyze_with_fallback(
                client,
                root,
                language=language,
                depth=depth,
                samples_for=lambda lang: collect_samples(manifest, lang),
                candidates=self._fallback_candidates(manifest),
            )

        graph = report.dependency_graph
        if report.files and not (graph.file_level or graph.function_level):
            report.dependency_graph = build_dependency_graph(report.files, depth)

        issues = check_report(report, root=root, depth=depth)
        for issue in issues:
            self.logger.warning("Report contract: %s: %s", issue.subject, issue.detail)

        if cache_enabled and not issues:
            cache.store(key, fingerprint=digest, report=report)
            cache.persist()

        self.logger.info(
            "Analysed %d files under %s (depth=%s)", len(report.files), root, depth
        )
        return AnalysisOutcome(report=report, issues=issues, grammar=grammar)

    def run_grammar(
        self,
        language: str,
        path: str | Path,
        *,
        limit: int = 5,
    ) -> GrammarOutcome:
        root = self._resolve_root(path)
        config = load_config(root)
        manifest = self.scanner.scan(root)
        samples = collect_samples(manifest, language, limit=limit)
        if not samples:
            raise FileNotFoundError(f"No {language} sample files found under {root}")

        client = self.client_factory(config)
        with client:
            grammar = client.generate_grammar(language, samples)

        checks = self.grammars.sample_parse_errors(language, samples)
        if grammar.needs_refinement:
            self.logger.warning("Generated %s grammar needs manual refinement", language)
        return GrammarOutcome(grammar=grammar, samples=samples, checks=checks)

    def run_impact(
        self,
        path: str | Path,
        changed: List[str],
        *,
        report: DependencyReport | None = None,
    ) -> ImpactOutcome:
        """Return the files that transitively import any of ``changed``."""
        root = self._resolve_root(path)
        if report is None:
            report = self.run_analysis(root).report
        keys = list(dict.fromkeys(self._relative_key(root, item) for item in changed))
        unknown = [key for key in keys if key not in report.files]
        if unknown:
            self.logger.warning("Not in the dependency report: %s", ", ".join(unknown))
        dependents = [
            key for key in dependents_of(report.dependency_graph.file_level, keys) if key not in keys
        ]
        tests = [key for key in keys + dependents if detect_role(key) == "test"]
        return ImpactOutcome(changed=keys, dependents=dependents, tests=tests)

    # ------------------------------------------------------------------
    # Specs and test planning

    def load_specs(self, path: str | Path) -> Tuple[List[SpecDocument], List[SpecIssue]]:
        root = self._resolve_root(path)
        config = load_config(root)
        documents: List[SpecDocument] = []
        issues: List[SpecIssue] = []
        for spec_path in discover_specs(root, config.specs.directory):
            document, found = load_spec(spec_path)
            document.path = spec_path.relative_to(root).as_posix()
            for issue in found:
                issue.path = document.path
            documents.append(document)
            issues.extend(found)
        for issue in issues:
            self.logger.warning("Spec format: %s", issue)
        return documents, issues

    def run_plan(
        self,
        path: str | Path,
        *,
        write: bool = False,
        overwrite: bool = False,
    ) -> PlanOutcome:
        root = self._resolve_root(path)
        config = load_config(root)
        documents, issues = self.load_specs(root)
        plans = [plan_tests(document) for document in documents]
        assign_module_names(plans)
        tests_dir = root / config.specs.tests_dir

        written: List[Path] = []
        if write:
            for plan in plans:
                if not plan.tests:
                    continue
                try:
                    written.append(write_test_module(plan, tests_dir, overwrite=overwrite))
                except FileExistsError as exc:
                    self.logger.warning("%s; skipping", exc)

        gaps = coverage_gaps(plans, tests_dir)
        return PlanOutcome(plans=plans, issues=issues, written=written, gaps=gaps)

    # ------------------------------------------------------------------
    # Code map

    def check_codemap(
        self,
        path: str | Path,
        *,
        report: DependencyReport | None = None,
    ) -> List[Discrepancy]:
        root = self._resolve_root(path)
        config = load_config(root)
        codemap_path = root / config.codemap.path
        if not codemap_path.exists():
            raise FileNotFoundError(f"Code map not found: {codemap_path}")
        if report is None:
            report = self.run_analysis(root).report
        codemap = parse_codemap(codemap_path.read_text(encoding="utf-8"))
        return compare_with_report(codemap, report, root=root)

    def update_codemap(
        self,
        path: str | Path,
        *,
        report: DependencyReport | None = None,
    ) -> Path:
        root = self._resolve_root(path)
        config = load_config(root)
        codemap_path = root / config.codemap.path
        if report is None:
            report = self.run_analysis(root).report
        current = codemap_path.read_text(encoding="utf-8") if codemap_path.exists() else ""
        updated = update_from_report(current, report)
        if updated != current:
            codemap_path.parent.mkdir(parents=True, exist_ok=True)
            codemap_path.write_text(updated, encoding="utf-8")
            self.logger.info("Code map updated at %s", codemap_path)
        return codemap_path

    # ------------------------------------------------------------------
    # Internal helpers

    @staticmethod
    def _relative_key(root: Path, value: str) -> str:
        candidate = Path(value).expanduser()
        if candidate.is_absolute():
            try:
                candidate = candidate.resolve().relative_to(root)
            except ValueError:
                return candidate.as_posix()
        return candidate.as_posix()

    @staticmethod
    def _resolve_root(path: str | Path) -> Path:
        root = Path(path).expanduser().resolve()
        if not root.exists():
            raise FileNotFoundError(f"Project path not found: {path}")
        if not root.is_dir():
            raise NotADirectoryError(f"Project path is not a directory: {path}")
        return root

    def _fallback_candidates(self, manifest: ProjectManifest) -> List[str]:
        languages = [lang for lang in manifest.languages() if lang != "markdown"]
        if not self.grammars.enabled:
            return languages
        missing = self.grammars.unsupported_languages(languages)
        return [lang for lang in languages if lang in missing] + [
            lang for lang in languages if lang not in missing
        ]

    def _warn_unsupported(self, manifest: ProjectManifest, language: str | None) -> None:
        if not self.grammars.enabled:
            return
        languages = [language] if language else manifest.languages()
        missing = [lang for lang in self.grammars.unsupported_languages(languages) if lang != "markdown"]
        if missing:
            self.logger.info(
                "No local tree-sitter grammar for: %s (the service may need to generate one)",
                ", ".join(missing),
            )


__all__ = ["AnalysisOutcome", "GrammarOutcome", "ImpactOutcome", "Orchestrator", "PlanOutcome"]
