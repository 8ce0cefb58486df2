from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest

from ipadumper.ios import dump as dump_module
from ipadumper.ios.binary_scan import StringLine
from ipadumper.ios.dump import dump, main
from ipadumper.shared.errors import BinaryNotFoundError, BundleDiscoveryError, InputValidationError
from ipadumper.shared.tools import BuiltinStrings, PlistlibConverter, Toolbox

R2_OUTPUT = "nth paddr vaddr len size section type string\n0 0x4000 0x4000 25 26 ascii applinks:example.com/path\n"


@pytest.fixture
def toolbox(fake_tool):
    return Toolbox(
        plist_converter=PlistlibConverter(),
        binary_inspector=fake_tool("r2", output=R2_OUTPUT),
        strings=BuiltinStrings(),
    )


def tree(root: Path) -> dict[str, bytes | None]:
    return {
        path.relative_to(root).as_posix(): None if path.is_dir() else path.read_bytes()
        for path in root.rglob("*")
    }


def test_end_to_end(app_ipa, app_binary, settings, toolbox):
    seen_manifest, seen_bundles = [], []

    result = dump(
        app_ipa,
        settings,
        toolbox,
        on_manifest=lambda lines, path: seen_manifest.append(path),
        on_bundle=seen_bundles.append,
    )

    out = app_ipa.parent / "App"
    assert result.ok, result.failures
    assert result.output == out
    assert (out / "App.zip").is_file()
    assert (out / "Payload/App.app/App").read_bytes() == app_binary
    assert result.extraction.manifest_found
    assert result.manifest == out / "Info.plist"
    assert (out / "Info.plist").read_text(encoding="utf-8").startswith("<?xml")
    assert seen_manifest == [out / "Info.plist"]

    tagged = {line.text.strip(): line.category for line in result.highlights if line.category}
    assert tagged["<key>CFBundleURLSchemes</key>"] == "cyan"
    assert tagged["<key>CFBundleURLName</key>"] == "green"
    assert tagged["<key>CFBundleTypeRole</key>"] == "yellow"

    assert seen_bundles == result.scans
    (scan,) = result.scans
    assert scan.binary == out / "Payload/App.app/App"
    marked = [line for line in scan.plist_lines if line.has_marker]
    assert len(marked) == 1
    assert ("applinks:", True) in marked[0].segments
    assert scan.string_lines == [
        StringLine("applinks:example.com/path", False),
        StringLine("/usr/lib/libfoo.dylib", True),
    ]


def test_manifest_missing_still_scans(make_ipa, app_binary, settings, toolbox):
    ipa = make_ipa({"Payload/App.app/App": app_binary})

    result = dump(ipa, settings, toolbox)

    assert not result.extraction.manifest_found
    assert result.manifest is None
    assert not (result.output / "Info.plist").exists()
    assert len(result.failures) == 1 and result.failures[0].startswith("normalize-manifest")
    assert len(result.scans) == 1


def test_normalize_failure_is_recorded(app_ipa, settings, toolbox, fake_tool):
    toolbox.plist_converter = fake_tool("plutil", output="conversion failed", returncode=1)

    result = dump(app_ipa, settings, toolbox)

    assert result.highlights == []
    assert "conversion failed" in result.failures[0]
    assert len(result.scans) == 1


def test_missing_binary_is_fatal(make_ipa, settings, toolbox, binary_plist):
    ipa = make_ipa({"Payload/App.app/Info.plist": binary_plist, "Payload/App.app/Other": b"x"})

    with pytest.raises(BinaryNotFoundError, match="App.app/App"):
        dump(ipa, settings, toolbox)
    out = ipa.parent / "App"
    assert (out / "Payload/App.app/Other").read_bytes() == b"x"
    assert (out / "Info.plist").is_file()


def test_first_bundle_failure_stops_the_run(make_ipa, app_binary, settings, toolbox):
    ipa = make_ipa({"Payload/A.app/Nope": b"x", "Payload/B.app/B": app_binary})
    scanned = []

    with pytest.raises(BinaryNotFoundError):
        dump(ipa, settings, toolbox, on_bundle=scanned.append)
    assert scanned == []


def test_continue_on_error_scans_remaining_bundles(make_ipa, app_binary, settings, toolbox):
    ipa = make_ipa({"Payload/A.app/Nope": b"x", "Payload/B.app/B": app_binary})
    settings = dataclasses.replace(settings, continue_on_error=True)

    result = dump(ipa, settings, toolbox)

    assert [scan.app_dir.name for scan in result.scans] == ["A.app", "B.app"]
    assert "main executable not found" in result.scans[0].error
    assert result.scans[1].error is None
    assert any(failure.startswith("scan-bundle") for failure in result.failures)


def test_no_bundles(make_ipa, settings, toolbox):
    ipa = make_ipa({"README": b"nothing here"})

    with pytest.raises(BundleDiscoveryError):
        dump(ipa, settings, toolbox)


def test_existing_destination_has_no_side_effects(app_ipa, settings, toolbox):
    (app_ipa.parent / "App").mkdir()

    with pytest.raises(InputValidationError):
        dump(app_ipa, settings, toolbox)
    assert list((app_ipa.parent / "App").iterdir()) == []
    assert toolbox.binary_inspector.calls == []


def test_two_runs_are_identical(app_ipa, settings, toolbox, tmp_path):
    first = dump(app_ipa, settings, toolbox, output=tmp_path / "run1")
    second = dump(app_ipa, settings, toolbox, output=tmp_path / "run2")

    assert tree(first.output) == tree(second.output)
    assert first.highlights == second.highlights
    assert [s.plist_lines for s in first.scans] == [s.plist_lines for s in second.scans]
    assert [s.string_lines for s in first.scans] == [s.string_lines for s in second.scans]


def test_main_without_package_prints_help(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main([])

    assert excinfo.value.code == 0
    assert "usage: ipadumper" in capsys.readouterr().out


def test_main_help_flag():
    with pytest.raises(SystemExit) as excinfo:
        main(["-h"])

    assert excinfo.value.code == 0


def test_main_rejects_wrong_extension(tmp_path):
    package = tmp_path / "App.apk"
    package.write_bytes(b"PK")

    with pytest.raises(SystemExit) as excinfo:
        main([str(package)])

    assert excinfo.value.code == 1
    assert not (tmp_path / "App").exists()


def test_main_writes_report(app_ipa, toolbox, monkeypatch, tmp_path):
    monkeypatch.setattr(dump_module, "build_toolbox", lambda settings: toolbox)
    report = tmp_path / "reports" / "dump.json"

    main([str(app_ipa), "--report", str(report)])

    data = json.loads(report.read_text(encoding="utf-8"))
    assert data["normalized_manifest"] == str(app_ipa.parent / "App" / "Info.plist")
    assert any(item["category"] == "cyan" for item in data["highlights"])
    assert data["bundles"][0]["plist_markers"] == ["0 0x4000 0x4000 25 26 ascii applinks:example.com/path"]
    assert {"text": "/usr/lib/libfoo.dylib", "path_like": True} in data["bundles"][0]["strings"]
    assert data["failures"] == []


def test_main_exits_nonzero_on_recorded_failures(make_ipa, app_binary, toolbox, monkeypatch):
    ipa = make_ipa({"Payload/App.app/App": app_binary})
    monkeypatch.setattr(dump_module, "build_toolbox", lambda settings: toolbox)

    with pytest.raises(SystemExit) as excinfo:
        main([str(ipa)])

    assert excinfo.value.code == 1
    assert (ipa.parent / "App" / "Payload/App.app/App").is_file()


@pytest.mark.parametrize(
    "body",
    [
        "highlight: [{key: A}]\n",
        "scan: null\n",
        "tools: {strings: gstrings}\n",
    ],
)
def test_main_malformed_config_exits_cleanly(app_ipa, tmp_path, capsys, body):
    config = tmp_path / "bad.yaml"
    config.write_text(body, encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        main([str(app_ipa), "--config", str(config)])

    assert excinfo.value.code == 1
    assert "Error (config)" in capsys.readouterr().out
    assert not (tmp_path / "App").exists()


def test_main_handles_markup_in_entry_names(make_ipa, app_binary, binary_plist, toolbox, monkeypatch, capsys):
    ipa = make_ipa(
        {
            "Payload/App.app/x[/y]Info.plist": binary_plist,
            "Payload/App.app/App": app_binary,
        },
        name="[red]App.ipa",
    )
    monkeypatch.setattr(dump_module, "build_toolbox", lambda settings: toolbox)

    with pytest.raises(SystemExit) as excinfo:
        main([str(ipa)])

    assert excinfo.value.code == 1
    assert "Info.plist found at" in capsys.readouterr().out
    assert (ipa.parent / "[red]App" / "Payload/App.app/x[/y]Info.plist").is_file()
