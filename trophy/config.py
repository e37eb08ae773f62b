"""Configuration loading for trophy (.trophy.yml)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .models import DEPTH_FILE, normalise_depth

CONFIG_FILENAME = ".trophy.yml"
DEFAULT_SERVICE_NAME = "tree-sitter"
ENV_SERVICE_KEY = "TROPHY_SERVICE"


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


@dataclass
class ServiceConfig:
    """Which host settings entry launches the dependency service."""

    name: str = DEFAULT_SERVICE_NAME
    settings_file: Optional[Path] = None
    timeout: float = 60.0


@dataclass
class AnalysisConfig:
    """Defaults for dependency analysis runs."""

    depth: str = DEPTH_FILE
    language: Optional[str] = None
    cache: bool = True
    exclude_paths: List[str] = field(default_factory=list)


@dataclass
class SpecsConfig:
    """Where OpenSpec documents and generated tests live."""

    directory: str = "openspec"
    tests_dir: str = "tests/integration"


@dataclass
class CodeMapConfig:
    """Location of the human-maintained code map."""

    path: str = "CODEMAP.md"


@dataclass
class TrophyConfig:
    """Represents the settings defined in .trophy.yml."""

    root: Path
    service: ServiceConfig = field(default_factory=ServiceConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    specs: SpecsConfig = field(default_factory=SpecsConfig)
    codemap: CodeMapConfig = field(default_factory=CodeMapConfig)

    @property
    def cache_path(self) -> Path:
        return self.root / ".trophy" / "report_cache.json"


def load_config(config_path: Path) -> TrophyConfig:
    """Load configuration from disk, falling back to defaults when absent."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        config = TrophyConfig(root=root)
        _apply_env_overrides(config)
        return config

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    service = ServiceConfig()
    service_data = _as_dict(data.get("service"))
    if service_data:
        service.name = _as_str(service_data.get("name")) or DEFAULT_SERVICE_NAME
        settings_file = _as_str(service_data.get("settings_file"))
        service.settings_file = root / settings_file if settings_file else None
        timeout = _as_float(service_data.get("timeout"))
        if timeout is not None:
            if timeout <= 0:
                raise ConfigError("service.timeout must be positive")
            service.timeout = timeout

    analysis = AnalysisConfig()
    analysis_data = _as_dict(data.get("analysis"))
    if analysis_data:
        try:
            analysis.depth = normalise_depth(_as_str(analysis_data.get("depth")))
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        analysis.language = _as_str(analysis_data.get("language"))
        cache = _as_bool(analysis_data.get("cache"))
        analysis.cache = True if cache is None else cache
        analysis.exclude_paths = _as_str_list(analysis_data.get("exclude_paths"))

    specs = SpecsConfig()
    specs_data = _as_dict(data.get("specs"))
    if specs_data:
        specs.directory = _as_str(specs_data.get("directory")) or specs.directory
        specs.tests_dir = _as_str(specs_data.get("tests_dir")) or specs.tests_dir

    codemap = CodeMapConfig()
    codemap_data = _as_dict(data.get("codemap"))
    if codemap_data:
        codemap.path = _as_str(codemap_data.get("path")) or codemap.path

    config = TrophyConfig(
        root=root,
        service=service,
        analysis=analysis,
        specs=specs,
        codemap=codemap,
    )
    _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: TrophyConfig) -> None:
    name = os.environ.get(ENV_SERVICE_KEY)
    if name:
        config.service.name = name.strip()


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    if config_path.name != CONFIG_FILENAME:
        return (config_path.parent / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    return str(value) if isinstance(value, (str, int, float)) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []
