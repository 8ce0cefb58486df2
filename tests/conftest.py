from __future__ import annotations

import plistlib
import zipfile
from pathlib import Path

import pytest

from ipadumper.shared.config import DEFAULTS, settings_from_dict
from ipadumper.shared.tools import ToolResult

URL_TYPES_PLIST = {
    "CFBundleIdentifier": "com.example.app",
    "CFBundleURLTypes": [
        {
            "CFBundleTypeRole": "Editor",
            "CFBundleURLName": "com.example.app",
            "CFBundleURLSchemes": ["example"],
        }
    ],
}

APP_BINARY = (
    b"\xcf\xfa\xed\xfe\x07\x00\x00\x01"
    b"applinks:example.com/path\x00"
    b"/usr/lib/libfoo.dylib\x00"
    b"https://example.com/track\x00"
    b"no slash here\x00"
)


class FakeTool:
    """Stands in for an external program; records every call."""

    def __init__(self, name: str = "fake", output: str = "", returncode: int = 0) -> None:
        self.name = name
        self.output = output
        self.returncode = returncode
        self.calls: list[list[str]] = []

    def invoke(self, args: list[str]) -> ToolResult:
        self.calls.append(list(args))
        return ToolResult(output=self.output, returncode=self.returncode)


@pytest.fixture(autouse=True)
def no_config_env(monkeypatch):
    monkeypatch.delenv("IPADUMPER_CONFIG", raising=False)


@pytest.fixture
def settings():
    return settings_from_dict(DEFAULTS)


@pytest.fixture
def fake_tool():
    return FakeTool


@pytest.fixture
def binary_plist() -> bytes:
    return plistlib.dumps(URL_TYPES_PLIST, fmt=plistlib.FMT_BINARY)


@pytest.fixture
def make_ipa(tmp_path: Path):
    """Build a zip at ``tmp_path/<name>`` from ``{entry_name: bytes | None}``; ``None`` marks a directory."""

    def build(entries: dict[str, bytes | None], name: str = "App.ipa", modes: dict[str, int] | None = None) -> Path:
        path = tmp_path / name
        modes = modes or {}
        with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as archive:
            for entry, data in entries.items():
                info = zipfile.ZipInfo(entry)
                if entry in modes:
                    info.external_attr = modes[entry] << 16
                if data is None:
                    info.external_attr |= 0x10
                    archive.writestr(info, b"")
                else:
                    archive.writestr(info, data)
        return path

    return build


@pytest.fixture
def app_ipa(make_ipa, binary_plist) -> Path:
    return make_ipa(
        {
            "Payload/": None,
            "Payload/App.app/": None,
            "Payload/App.app/Info.plist": binary_plist,
            "Payload/App.app/App": APP_BINARY,
            "Payload/App.app/Frameworks/Foo.framework/Info.plist": binary_plist,
        },
        modes={"Payload/App.app/App": 0o100755},
    )


@pytest.fixture
def app_binary() -> bytes:
    return APP_BINARY
