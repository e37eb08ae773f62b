"""Minimal stdio analysis service used by integration tests.

Speaks newline-delimited JSON-RPC and answers ``analyze_dependencies``,
``generate_grammar`` and ``list_languages`` with naive line-based parsing of
python files. Languages listed in ``FAKE_SUPPORTED`` are treated as having a
grammar; ``generate_grammar`` registers more for the rest of the session.
"""

from __future__ import annotations

import json
import os
import re
import sys
from pathlib import Path

SUFFIXES = {".py": "python", ".rb": "ruby", ".go": "go", ".ex": "elixir"}
IMPORT = re.compile(r"^(?:from\s+([\w.]+)\s+import|import\s+([\w.]+))")
DEF = re.compile(r"^def\s+(\w+)\s*\(([^)]*)\)")
CLASS = re.compile(r"^class\s+(\w+)")
CONST = re.compile(r"^([A-Z][A-Z0-9_]*)\s*=")
CALL = re.compile(r"([A-Za-z_][\w.]*)\(")

supported = {item for item in os.environ.get("FAKE_SUPPORTED", "python").split(",") if item}
# Report internal imports as dotted module ids and leave the graph to the client.
module_ids = os.environ.get("FAKE_MODULE_IDS") == "1"
# Leave the language out of unsupported-language errors.
anonymous_errors = os.environ.get("FAKE_ANONYMOUS_ERRORS") == "1"


def respond(request_id, result=None, error=None):
    message = {"jsonrpc": "2.0", "id": request_id}
    if error is not None:
        message["error"] = error
    else:
        message["result"] = result
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def tool_result(payload):
    return {"content": [{"type": "text", "text": json.dumps(payload)}], "isError": False}


def source_files(root):
    for path in sorted(root.rglob("*")):
        if not path.is_file() or any(part.startswith(".") for part in path.relative_to(root).parts):
            continue
        if path.suffix in SUFFIXES:
            yield path


def analyze(arguments):
    root = Path(arguments["path"])
    depth = arguments.get("depth", "file")
    files = list(source_files(root))
    languages = {SUFFIXES[path.suffix] for path in files}
    requested = arguments.get("language")
    for language in sorted({requested} if requested else languages):
        if language not in supported:
            if anonymous_errors:
                return None, {"code": -32001, "message": "No grammar available"}
            return None, {
                "code": -32001,
                "message": f"Unsupported language: {language}",
                "data": {"language": language},
            }

    modules = {path.stem: path.relative_to(root).as_posix() for path in files}
    report_files = {}
    for path in files:
        rel = path.relative_to(root).as_posix()
        external, internal = [], []
        exports = {"functions": [], "classes": [], "constants": []}
        functions = {}
        current = None
        for number, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
            match = IMPORT.match(line)
            if match:
                name = (match.group(1) or match.group(2)).split(".")[0]
                if name in modules:
                    target = modules[name]
                    if module_ids:
                        target = target.rsplit(".", 1)[0].replace("/", ".")
                    if target not in internal:
                        internal.append(target)
                elif name not in external:
                    external.append(name)
                continue
            match = DEF.match(line)
            if match:
                current = match.group(1)
                exports["functions"].append(current)
                params = [item.strip() for item in match.group(2).split(",") if item.strip()]
                functions[current] = {"calls": [], "parameters": params, "returns": None}
                continue
            match = CLASS.match(line)
            if match:
                exports["classes"].append(match.group(1))
                current = None
                continue
            match = CONST.match(line)
            if match:
                exports["constants"].append(match.group(1))
                current = None
                continue
            if current and line.startswith((" ", "\t")):
                for call in CALL.findall(line):
                    functions[current]["calls"].append({"function": call, "line": number})
        entry = {
            "imports": {"external": external, "internal": internal},
            "exports": exports,
        }
        if depth != "file":
            entry["functions"] = functions
        report_files[rel] = entry

    file_level = {rel: list(entry["imports"]["internal"]) for rel, entry in report_files.items()}
    function_level = {}
    if depth != "file":
        for rel, entry in report_files.items():
            for name, info in entry.get("functions", {}).items():
                function_level[f"{rel}::{name}"] = [call["function"] for call in info["calls"]]

    payload = {
        "analysis": {
            "path": str(root),
            "language": requested or (sorted(languages)[0] if languages else None),
            "files_analyzed": len(report_files),
            "depth": depth,
        },
        "files": report_files,
    }
    if not module_ids:
        payload["dependency_graph"] = {"file_level": file_level, "function_level": function_level}
    return payload, None


def main():
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        message = json.loads(line)
        request_id = message.get("id")
        method = message.get("method")
        if request_id is None:
            continue
        if method == "initialize":
            sys.stderr.write("fake service starting\n")
            respond(request_id, {"protocolVersion": "2024-11-05", "serverInfo": {"name": "fake"}})
        elif method == "tools/call":
            params = message.get("params", {})
            name = params.get("name")
            arguments = params.get("arguments", {})
            if name == "analyze_dependencies":
                payload, error = analyze(arguments)
                if error is not None:
                    respond(request_id, error=error)
                else:
                    respond(request_id, tool_result(payload))
            elif name == "generate_grammar":
                language = arguments["language"]
                supported.add(language)
                respond(
                    request_id,
                    tool_result(
                        {
                            "language": language,
                            "grammar_path": f"grammars/{language}/grammar.js",
                            "needs_refinement": True,
                            "notes": [f"derived from {len(arguments.get('samples', []))} samples"],
                        }
                    ),
                )
            elif name == "list_languages":
                respond(request_id, tool_result({"languages": sorted(supported)}))
            else:
                respond(request_id, error={"code": -32601, "message": f"Unknown tool: {name}"})
        else:
            respond(request_id, error={"code": -32601, "message": f"Unknown method: {method}"})


if __name__ == "__main__":
    main()
