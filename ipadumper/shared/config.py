"""Load dump settings from YAML, falling back to built-in defaults."""
from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console
from rich.markup import escape

from ipadumper.shared.errors import InputValidationError

console = Console()

CONFIG_ENV = "IPADUMPER_CONFIG"

DEFAULTS: dict[str, Any] = {
    "package_suffix": ".ipa",
    "manifest_name": "Info.plist",
    "highlight": [
        {"key": "CFBundleURLSchemes", "style": "cyan"},
        {"key": "CFBundleURLName", "style": "green"},
        {"key": "CFBundleTypeRole", "style": "yellow"},
        {"key": "CFBundleURLComponents", "style": "magenta"},
        {"key": "CFBundleComponentPath", "style": "red"},
        {"key": "CFBundleURLComponentQueryItems", "style": "blue"},
    ],
    "exclusions": ["https://", "/Users/", "/Volumes/", "http://", "BuildRoot/"],
    "link_marker": "applinks:",
    "inspector_query": "izz~PropertyList",
    "tools": {
        "plist_converter": {"executable": "plutil", "backend": "auto"},
        "binary_inspector": {"executable": "r2", "backend": "external"},
        "strings": {"executable": "strings", "backend": "auto"},
    },
    "scan": {
        "continue_on_error": False,
    },
}

BACKENDS = {"auto", "external", "builtin"}


@dataclass(frozen=True)
class HighlightRule:
    key: str
    category: str


@dataclass(frozen=True)
class ToolSpec:
    executable: str
    backend: str = "auto"


@dataclass(frozen=True)
class Settings:
    package_suffix: str
    manifest_name: str
    highlight_rules: tuple[HighlightRule, ...]
    exclusions: tuple[str, ...]
    link_marker: str
    inspector_query: str
    tools: dict[str, ToolSpec]
    continue_on_error: bool = False


def merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def require(value: Any, kind: type, where: str) -> Any:
    if not isinstance(value, kind):
        expected = "a mapping" if kind is dict else "a list" if kind is list else f"a {kind.__name__}"
        raise InputValidationError(f"{where} must be {expected}, got {type(value).__name__}", stage="config")
    return value


def require_keys(item: dict, keys: tuple[str, ...], where: str) -> None:
    missing = [key for key in keys if key not in item]
    if missing:
        raise InputValidationError(f"{where} is missing {', '.join(missing)}", stage="config")


def parse_rules(entries: Any) -> tuple[HighlightRule, ...]:
    rules = []
    for index, item in enumerate(require(entries, list, "highlight")):
        where = f"highlight[{index}]"
        require_keys(require(item, dict, where), ("key", "style"), where)
        rules.append(HighlightRule(key=str(item["key"]), category=str(item["style"])))
    keys = [rule.key for rule in rules]
    if len(set(keys)) != len(keys):
        raise InputValidationError("highlight keys must be unique", stage="config")
    return tuple(rules)


def parse_tools(entries: Any) -> dict[str, ToolSpec]:
    tools: dict[str, ToolSpec] = {}
    for name, spec in require(entries, dict, "tools").items():
        where = f"tools.{name}"
        require_keys(require(spec, dict, where), ("executable",), where)
        backend = spec.get("backend", "auto")
        if backend not in BACKENDS:
            raise InputValidationError(f"unknown backend '{backend}' for {name}", stage="config")
        tools[name] = ToolSpec(executable=str(spec["executable"]), backend=backend)
    return tools


def settings_from_dict(data: dict) -> Settings:
    """Build ``Settings`` from a merged config mapping.

    Any shape problem surfaces as ``InputValidationError`` with stage ``config``.
    """
    require_keys(data, ("package_suffix", "manifest_name", "link_marker", "inspector_query"), "config")
    scan = data.get("scan", {})
    return Settings(
        package_suffix=str(data["package_suffix"]),
        manifest_name=str(data["manifest_name"]),
        highlight_rules=parse_rules(data.get("highlight")),
        exclusions=tuple(str(pattern) for pattern in require(data.get("exclusions"), list, "exclusions")),
        link_marker=str(data["link_marker"]),
        inspector_query=str(data["inspector_query"]),
        tools=parse_tools(data.get("tools")),
        continue_on_error=bool(require(scan, dict, "scan").get("continue_on_error", False)),
    )


def load_config(path: Path | None = None) -> Settings:
    if path is None:
        env_path = os.getenv(CONFIG_ENV)
        if not env_path:
            return settings_from_dict(DEFAULTS)
        path = Path(env_path)

    if not path.exists():
        raise InputValidationError(f"Missing config file: {path}", stage="config")
    with path.open("r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise InputValidationError(f"Unable to parse {path}: {exc}", stage="config") from exc
    if not isinstance(data, dict):
        raise InputValidationError(f"{path} must contain a mapping", stage="config")
    console.print(f"Loaded config {escape(str(path))}")
    return settings_from_dict(merge(DEFAULTS, data))
