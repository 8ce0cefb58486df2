"""Failure types raised by the dump pipeline."""
from __future__ import annotations

from pathlib import Path


class DumperError(Exception):
    stage = "dump"

    def __init__(self, message: str, stage: str | None = None) -> None:
        super().__init__(message)
        if stage:
            self.stage = stage


class InputValidationError(DumperError):
    stage = "validate-input"


class ExtractionError(DumperError):
    stage = "extract"


class ManifestError(DumperError):
    stage = "manifest"


class ToolError(DumperError):
    """An external (or substitute) tool could not run or exited non-zero."""

    stage = "tool"

    def __init__(self, tool: str, message: str, output: str = "", stage: str | None = None) -> None:
        self.tool = tool
        self.output = output
        text = f"{tool}: {message}"
        if output.strip():
            text += f", output: {output.strip()}"
        super().__init__(text, stage)


class BinaryNotFoundError(DumperError):
    stage = "scan-bundle"

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"main executable not found at {path}")


class BundleDiscoveryError(DumperError):
    stage = "discover-bundles"
