from __future__ import annotations

import json
from pathlib import Path

import pytest

import cli
from winprovision.user_settings import SettingsStore


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "setup_logging", lambda: None)
    monkeypatch.setattr(cli, "SettingsStore", lambda: SettingsStore(tmp_path / "settings.json"))
    monkeypatch.setattr(cli, "ensure_admin", lambda interactive=True: pytest.fail("elevation not expected"))


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_parser_reads_global_options() -> None:
    args = cli.build_parser().parse_args(["--direct-only", "--workers", "3", "install", "Git", "Steam"])

    assert args.direct_only
    assert args.workers == 3
    assert args.apps == ["Git", "Steam"]


def test_list_prints_routes(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["list"]) == 0

    out = capsys.readouterr().out
    assert "Browsers" in out
    assert "winget:Google.Chrome" in out
    assert "github_release:.exe" in out


def test_save_profile_writes_json(tmp_path: Path) -> None:
    target = tmp_path / "profile.json"

    code = cli.main(["save-profile", str(target), "--apps", "Git", "Steam", "--services", "DiagTrack"])

    assert code == 0
    data = json.loads(target.read_text(encoding="utf-8"))
    assert data["apps"] == ["Git", "Steam"]
    assert data["services"] == ["DiagTrack"]


def test_bad_catalog_exits_with_usage_error(tmp_path: Path) -> None:
    catalog = tmp_path / "catalog.json"
    catalog.write_text("{}", encoding="utf-8")

    assert cli.main(["--catalog", str(catalog), "list"]) == 2


def test_install_without_selection_is_rejected() -> None:
    assert cli.main(["--no-elevate", "install"]) == 2


def test_install_elevation_declined_exits_quietly(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[bool] = []

    def fake_ensure_admin(interactive: bool = True) -> bool:
        calls.append(interactive)
        return False

    monkeypatch.setattr(cli, "ensure_admin", fake_ensure_admin)

    assert cli.main(["install", "Git"]) == 0
    assert calls == [False]


def test_select_falls_back_to_profile_then_everything() -> None:
    class Item:
        def __init__(self, name: str) -> None:
            self.name = name

    items = [Item("DiagTrack"), Item("Fax"), Item("lfsvc")]

    assert [item.name for item in cli._select(items, ["fax"], ["lfsvc"])] == ["Fax"]
    assert [item.name for item in cli._select(items, [], ["LFSVC"])] == ["lfsvc"]
    assert len(cli._select(items, [], [])) == 3
