"""CLI entrypoints for trophy commands."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .config import ConfigError
from .logging import configure_logging, get_logger
from .models import DEPTHS
from .orchestrator import Orchestrator
from .plugin import ServiceError, ServiceNotConfiguredError, UnsupportedLanguageError
from .report import ContractError, ReportFormatError, check_report, dumps_report, load_report
from .specs import SpecsNotFoundError
from .testplan import render_test_module


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_path_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path to the project root (defaults to current directory).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trophy",
        description="Integration-first testing helpers built on OpenSpec scenarios and dependency analysis.",
    )
    _add_verbose_option(parser)
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Also write debug-formatted log records to this file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Run dependency analysis through the configured service.",
    )
    _add_verbose_option(analyze_parser, suppress_default=True)
    _add_path_argument(analyze_parser)
    analyze_parser.add_argument(
        "--language",
        help="Override language detection (tree-sitter grammar name).",
    )
    analyze_parser.add_argument(
        "--depth",
        choices=DEPTHS,
        help="file: imports/exports only, function: add call graph, full: complete.",
    )
    analyze_parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Ignore and do not update the report cache.",
    )
    analyze_parser.add_argument(
        "--output",
        type=Path,
        help="Write the report JSON to this file instead of stdout.",
    )

    grammar_parser = subparsers.add_parser(
        "grammar",
        help="Ask the service to generate a grammar for an unsupported language.",
    )
    _add_verbose_option(grammar_parser, suppress_default=True)
    grammar_parser.add_argument("language", help="Language to generate a grammar for.")
    _add_path_argument(grammar_parser)
    grammar_parser.add_argument(
        "--samples",
        type=int,
        default=5,
        help="Maximum number of sample files to send.",
    )

    specs_parser = subparsers.add_parser(
        "specs",
        help="List spec requirements and scenarios.",
    )
    _add_verbose_option(specs_parser, suppress_default=True)
    _add_path_argument(specs_parser)

    plan_parser = subparsers.add_parser(
        "plan",
        help="Plan one integration test per spec scenario.",
    )
    _add_verbose_option(plan_parser, suppress_default=True)
    _add_path_argument(plan_parser)
    plan_parser.add_argument(
        "--write",
        action="store_true",
        help="Write pytest skeleton modules into the configured tests directory.",
    )
    plan_parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Replace existing skeleton modules when writing.",
    )

    impact_parser = subparsers.add_parser(
        "impact",
        help="List files and tests that depend on the changed files.",
    )
    _add_verbose_option(impact_parser, suppress_default=True)
    impact_parser.add_argument("changed", nargs="+", help="Changed file paths.")
    impact_parser.add_argument(
        "--path",
        default=".",
        help="Path to the project root (defaults to current directory).",
    )
    impact_parser.add_argument(
        "--report",
        type=Path,
        help="Use a saved report JSON instead of running the analysis.",
    )

    codemap_parser = subparsers.add_parser(
        "codemap",
        help="Check or refresh the code map against a dependency report.",
    )
    _add_verbose_option(codemap_parser, suppress_default=True)
    codemap_parser.add_argument("action", choices=("check", "update"))
    _add_path_argument(codemap_parser)
    codemap_parser.add_argument(
        "--report",
        type=Path,
        help="Use a saved report JSON instead of running the analysis.",
    )

    validate_parser = subparsers.add_parser(
        "validate",
        help="Check a saved dependency report against the report contract.",
    )
    _add_verbose_option(validate_parser, suppress_default=True)
    validate_parser.add_argument("report", type=Path, help="Path to the report JSON.")
    validate_parser.add_argument(
        "--root",
        type=Path,
        help="Project root used to check that reported files exist.",
    )
    validate_parser.add_argument(
        "--depth",
        choices=DEPTHS,
        help="Depth that was requested (defaults to the report's own).",
    )

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP service.",
    )
    _add_verbose_option(serve_parser, suppress_default=True)
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for trophy commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose), log_file=args.log_file)
    get_logger("cli").debug("Running %s command", args.command)

    orchestrator = Orchestrator()

    try:
        if args.command == "analyze":
            _run_analyze(orchestrator, args)
        elif args.command == "grammar":
            _run_grammar(orchestrator, args)
        elif args.command == "specs":
            _run_specs(orchestrator, args)
        elif args.command == "plan":
            _run_plan(orchestrator, args)
        elif args.command == "impact":
            _run_impact(orchestrator, args)
        elif args.command == "codemap":
            if _run_codemap(orchestrator, args):
                parser.exit(1)
        elif args.command == "validate":
            if _run_validate(args):
                parser.exit(1)
        elif args.command == "serve":
            from .service import run_service

            run_service(host=args.host, port=args.port)
        else:  # pragma: no cover - argparse enforces choices
            parser.exit(1, "Unknown command\n")
    except UnsupportedLanguageError as exc:
        parser.exit(
            1,
            f"{exc}\nRun `trophy grammar {exc.language or '<language>'}` to generate a grammar first.\n",
        )
    except ServiceNotConfiguredError as exc:
        parser.exit(1, f"{exc}\n")
    except (SpecsNotFoundError, FileNotFoundError, NotADirectoryError, FileExistsError) as exc:
        parser.exit(1, f"{exc}\n")
    except (ConfigError, ReportFormatError, ContractError, ServiceError) as exc:
        parser.exit(1, f"trophy {args.command} failed: {exc}\nRun with --verbose for more details.\n")


def _run_analyze(orchestrator: Orchestrator, args: argparse.Namespace) -> None:
    outcome = orchestrator.run_analysis(
        args.path,
        language=args.language,
        depth=args.depth,
        use_cache=False if args.no_cache else None,
    )
    payload = dumps_report(outcome.report)
    if args.output:
        args.output.write_text(payload + "\n", encoding="utf-8")
        print(f"Report written to {_relativize(args.output)}")
    else:
        print(payload)
    if outcome.issues:
        print(f"{len(outcome.issues)} contract issue(s) found; see warnings above.", file=sys.stderr)


def _run_grammar(orchestrator: Orchestrator, args: argparse.Namespace) -> None:
    outcome = orchestrator.run_grammar(args.language, args.path, limit=args.samples)
    grammar = outcome.grammar
    location = grammar.grammar_path or "(registered in service)"
    print(f"Grammar for {grammar.language}: {location}")
    for check in outcome.checks:
        if check.parsed:
            print(f"  {check.path}: {check.error_nodes} parse error node(s)")
    if grammar.needs_refinement:
        print("The generated grammar is heuristic and needs manual refinement.")
    for note in grammar.notes:
        print(f"  - {note}")


def _run_specs(orchestrator: Orchestrator, args: argparse.Namespace) -> None:
    documents, issues = orchestrator.load_specs(args.path)
    for document in documents:
        print(f"{document.path}: {document.title or '(untitled)'}")
        for requirement in document.requirements:
            print(f"  Requirement: {requirement.name}")
            for scenario in requirement.scenarios:
                print(f"    Scenario: {scenario.name}")
    total = sum(document.scenario_count for document in documents)
    print(f"{len(documents)} spec(s), {total} scenario(s), {len(issues)} format issue(s)")


def _run_plan(orchestrator: Orchestrator, args: argparse.Namespace) -> None:
    outcome = orchestrator.run_plan(args.path, write=args.write, overwrite=args.overwrite)
    if args.write:
        for path in outcome.written:
            print(f"Test skeleton written to {_relativize(path)}")
    else:
        for plan in outcome.plans:
            if plan.tests:
                print(render_test_module(plan))
    for source, missing in outcome.gaps.items():
        print(f"{source}: {len(missing)} scenario(s) without a test", file=sys.stderr)
        for test in missing:
            print(f"  {test.name}  ({test.requirement} / {test.scenario})", file=sys.stderr)


def _run_impact(orchestrator: Orchestrator, args: argparse.Namespace) -> None:
    report = load_report(args.report) if args.report else None
    outcome = orchestrator.run_impact(args.path, args.changed, report=report)
    if not outcome.dependents:
        print("No dependents found")
    for path in outcome.dependents:
        print(path)
    if outcome.tests:
        print(f"{len(outcome.tests)} affected test file(s):")
        for path in outcome.tests:
            print(f"  {path}")


def _run_codemap(orchestrator: Orchestrator, args: argparse.Namespace) -> bool:
    report = load_report(args.report) if args.report else None
    if args.action == "update":
        path = orchestrator.update_codemap(args.path, report=report)
        print(f"Code map updated at {_relativize(path)}")
        return False
    discrepancies = orchestrator.check_codemap(args.path, report=report)
    if not discrepancies:
        print("Code map matches the dependency report")
        return False
    for item in discrepancies:
        print(f"[{item.kind}] {item.section}: {item.subject} ({item.detail})")
    return True


def _run_validate(args: argparse.Namespace) -> bool:
    report = load_report(args.report)
    issues = check_report(report, root=args.root, depth=args.depth)
    if not issues:
        print("Report satisfies the contract")
        return False
    for issue in issues:
        print(f"[{issue.rule}] {issue.subject}: {issue.detail}")
    return True


def _relativize(path: Path) -> str:
    try:
        return str(path.resolve().relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
