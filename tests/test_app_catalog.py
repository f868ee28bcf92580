"""Checks for the built-in catalog and JSON catalog loading."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from winprovision.app_catalog import (
    CatalogError,
    InstallerKind,
    UrlKind,
    build_catalog,
    load_catalog,
)
from winprovision.user_settings import UserSettings


def test_builtin_catalog_names_are_unique() -> None:
    names = [name.lower() for name in build_catalog().names()]
    assert len(names) == len(set(names))


def test_builtin_catalog_entries_have_a_route() -> None:
    assert all(entry.has_install_method for entry in build_catalog().entries)


def test_builtin_release_entries_carry_pattern_and_fallback() -> None:
    for entry in build_catalog().entries:
        download = entry.direct_download
        if download is None or download.url_kind is not UrlKind.GITHUB_RELEASE:
            continue
        assert download.url.startswith("https://api.github.com/repos/")
        assert download.asset_pattern
        assert download.fallback_url


def test_chrome_uses_msi_and_winget_id() -> None:
    chrome = build_catalog().get("google chrome")
    assert chrome is not None
    assert chrome.package_manager_id == "Google.Chrome"
    assert chrome.direct_download is not None
    assert chrome.direct_download.kind is InstallerKind.MSI


def test_discord_verification_path_uses_wildcard() -> None:
    discord = build_catalog().get("Discord")
    assert discord is not None
    assert any("app-*" in path for path in discord.verification_paths)


def test_spotify_is_winget_only() -> None:
    spotify = build_catalog().get("Spotify")
    assert spotify is not None
    assert spotify.direct_download is None
    assert spotify.has_install_method


def test_by_category_keeps_catalog_order() -> None:
    grouped = build_catalog().by_category()
    assert list(grouped)[0] == "Browsers"
    assert [entry.name for entry in grouped["Browsers"]] == ["Google Chrome", "Mozilla Firefox"]


def test_select_ignores_case_and_unknown_names() -> None:
    selected = build_catalog().select(["git", "STEAM", "Not An App"])
    assert [entry.name for entry in selected] == ["Git", "Steam"]


def test_load_catalog_accepts_list(tmp_path: Path) -> None:
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps(
            [
                {
                    "name": "Tool",
                    "package_manager_id": "Vendor.Tool",
                    "direct_download": {
                        "url": "https://example.com/files/tool-setup.EXE?sig=1",
                        "install_arguments": "/S",
                        "verification_paths": r"%ProgramFiles%\Tool\tool.exe",
                    },
                }
            ]
        ),
        encoding="utf-8",
    )

    catalog = load_catalog(path)

    tool = catalog.get("tool")
    assert tool is not None
    assert tool.direct_download is not None
    assert tool.direct_download.extension == ".exe"
    assert tool.direct_download.kind is InstallerKind.EXE
    assert tool.verification_paths == (r"%ProgramFiles%\Tool\tool.exe",)


def test_load_catalog_accepts_applications_object(tmp_path: Path) -> None:
    path = tmp_path / "catalog.json"
    payload = {
        "applications": [
            {
                "name": "Release Tool",
                "category": "Utilities",
                "direct_download": {
                    "url": "https://api.github.com/repos/example/tool/releases/latest",
                    "url_kind": "GITHUB_RELEASE",
                    "extension": "msi",
                    "asset_pattern": r"\.msi$",
                },
            }
        ]
    }
    path.write_text(json.dumps(payload), encoding="utf-8")

    entry = load_catalog(path).entries[0]

    assert entry.category == "Utilities"
    assert entry.direct_download is not None
    assert entry.direct_download.url_kind is UrlKind.GITHUB_RELEASE
    assert entry.direct_download.kind is InstallerKind.MSI


def test_unsupported_extension_loads_without_kind(tmp_path: Path) -> None:
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps([{"name": "Zip", "direct_download": {"url": "https://example.com/a.zip"}}]), encoding="utf-8")

    entry = load_catalog(path).entries[0]

    assert entry.direct_download is not None
    assert entry.direct_download.kind is None


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        json.dumps({"apps": []}),
        json.dumps(["just a string"]),
        json.dumps([{"package_manager_id": "Vendor.NoName"}]),
        json.dumps([{"name": "Bad", "direct_download": {"extension": ".exe"}}]),
        json.dumps([{"name": "Bad", "direct_download": {"url": "https://x/y.exe", "url_kind": "ftp"}}]),
    ],
)
def test_invalid_catalogs_raise_catalog_error(tmp_path: Path, content: str) -> None:
    path = tmp_path / "catalog.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(CatalogError):
        load_catalog(path)


def test_missing_catalog_file_raises_catalog_error(tmp_path: Path) -> None:
    with pytest.raises(CatalogError):
        load_catalog(tmp_path / "missing.json")


def test_settings_catalog_path_replaces_builtin(tmp_path: Path) -> None:
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps([{"name": "Only", "package_manager_id": "Vendor.Only"}]), encoding="utf-8")

    catalog = build_catalog(UserSettings(catalog_path=str(path)))

    assert catalog.names() == ["Only"]
