"""External tools used by the dump pipeline, and in-process stand-ins for them.

Every tool exposes ``invoke(args) -> ToolResult`` so a builtin substitute can
replace the command-line program without touching the pipeline.
"""
from __future__ import annotations

import plistlib
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from rich.console import Console
from rich.markup import escape

from ipadumper.shared.config import Settings, ToolSpec
from ipadumper.shared.errors import ToolError

console = Console()

PRINTABLE_RUN = re.compile(rb"[\x20-\x7E\t]{4,}")

# stdout of these is classified line by line, so stderr is kept apart
SEPARATE_STDERR = {"strings"}


@dataclass(frozen=True)
class ToolResult:
    output: str
    returncode: int
    stderr: str = ""

    @property
    def diagnostics(self) -> str:
        return "\n".join(part.strip() for part in (self.output, self.stderr) if part.strip())


class Tool(Protocol):
    name: str

    def invoke(self, args: list[str]) -> ToolResult: ...


class ExternalTool:
    def __init__(self, executable: str, merge_stderr: bool = True) -> None:
        self.executable = executable
        self.name = executable
        self.merge_stderr = merge_stderr

    def invoke(self, args: list[str]) -> ToolResult:
        cmd = [self.executable, *args]
        console.log(escape("$ " + " ".join(cmd)))
        try:
            completed = subprocess.run(
                cmd,
                check=False,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if self.merge_stderr else subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise ToolError(self.name, f"failed to launch ({exc})") from exc
        return ToolResult(output=completed.stdout, returncode=completed.returncode, stderr=completed.stderr or "")


class PlistlibConverter:
    """Rewrite a plist in place as XML, accepting ``-convert xml1 <file>``."""

    name = "plistlib"

    def invoke(self, args: list[str]) -> ToolResult:
        if len(args) != 3 or args[:2] != ["-convert", "xml1"]:
            return ToolResult(output=f"unsupported arguments: {' '.join(args)}", returncode=2)
        path = Path(args[2])
        try:
            data = plistlib.loads(path.read_bytes())
            path.write_bytes(plistlib.dumps(data, fmt=plistlib.FMT_XML, sort_keys=False))
        except (OSError, plistlib.InvalidFileException, ValueError, TypeError, OverflowError) as exc:
            return ToolResult(output=f"{path}: {exc}", returncode=1)
        return ToolResult(output="", returncode=0)


class BuiltinStrings:
    """Printable ASCII runs of four or more bytes, one per line."""

    name = "builtin-strings"

    def invoke(self, args: list[str]) -> ToolResult:
        if len(args) != 1:
            return ToolResult(output="usage: strings <file>", returncode=2)
        try:
            data = Path(args[0]).read_bytes()
        except OSError as exc:
            return ToolResult(output=f"{args[0]}: {exc}", returncode=1)
        runs = [run.decode("ascii") for run in PRINTABLE_RUN.findall(data)]
        return ToolResult(output="".join(f"{run}\n" for run in runs), returncode=0)


BUILTINS = {
    "plist_converter": PlistlibConverter,
    "strings": BuiltinStrings,
}


@dataclass
class Toolbox:
    plist_converter: Tool
    binary_inspector: Tool
    strings: Tool


def require_success(tool: Tool, args: list[str], stage: str | None = None) -> str:
    result = tool.invoke(args)
    if result.returncode != 0:
        raise ToolError(tool.name, f"exited with status {result.returncode}", result.diagnostics, stage)
    return result.output


def select_tool(name: str, spec: ToolSpec) -> Tool:
    builtin = BUILTINS.get(name)
    if spec.backend == "builtin":
        if builtin is None:
            raise ToolError(name, "no builtin substitute available", stage="config")
        return builtin()
    if spec.backend == "auto" and builtin is not None and not shutil.which(spec.executable):
        console.print(f"[yellow]{escape(spec.executable)} not found; using {builtin.name}")
        return builtin()
    return ExternalTool(spec.executable, merge_stderr=name not in SEPARATE_STDERR)


def build_toolbox(settings: Settings) -> Toolbox:
    return Toolbox(
        plist_converter=select_tool("plist_converter", settings.tools["plist_converter"]),
        binary_inspector=select_tool("binary_inspector", settings.tools["binary_inspector"]),
        strings=select_tool("strings", settings.tools["strings"]),
    )
