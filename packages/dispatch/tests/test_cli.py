from __future__ import annotations

import json
from pathlib import Path
from typing import Iterator

import pytest

from bench_dispatch import cli
from bench_dispatch.core import load_settings

from conftest import workflow_dict


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.delenv("BENCH_DISPATCH_CONFIG_PATH", raising=False)
    monkeypatch.delenv("BENCH_DISPATCH_TOKEN", raising=False)
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    p = tmp_path / "workflow.json"
    p.write_text(json.dumps(workflow_dict()))
    return p


def _common(tmp_path: Path, config_file: Path) -> list[str]:
    return [
        "--config",
        str(config_file),
        "--workspace",
        str(tmp_path),
        "--run-root",
        str(tmp_path / "_runs"),
    ]


def test_check_reports_admission(
    tmp_path: Path, config_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    rc = cli.main(
        ["check", *_common(tmp_path, config_file)]
        + ["--kind", "push", "--ref", "main", "--sha", "abc", "--path", "src/lexer.rs"]
    )
    assert rc == 0
    out = capsys.readouterr().out
    assert "Benchmark-abc" in out
    assert "yes" in out


def test_run_not_admitted_exits_zero_without_building(
    tmp_path: Path, config_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    rc = cli.main(
        ["run", *_common(tmp_path, config_file)]
        + ["--kind", "push", "--ref", "feature-x", "--sha", "abc", "--path", "src/lexer.rs"]
    )
    assert rc == 0
    assert "not_admitted" in capsys.readouterr().out
    assert not (tmp_path / "_runs").exists()


def test_batch_of_skipped_events(tmp_path: Path, config_file: Path) -> None:
    events = tmp_path / "events.jsonl"
    events.write_text(
        '{"kind": "push", "ref": "docs", "commit_sha": "1"}\n'
        '{"kind": "push", "ref": "main", "commit_sha": "2", "changed_paths": ["README.md"]}\n'
    )
    rc = cli.main(["batch", *_common(tmp_path, config_file), str(events)])
    assert rc == 0


def test_run_without_event_source_is_an_error(tmp_path: Path, config_file: Path) -> None:
    assert cli.main(["run", *_common(tmp_path, config_file), "--kind", "push"]) == 1


def test_invalid_config_exits_one(tmp_path: Path) -> None:
    bad = tmp_path / "workflow.json"
    bad.write_text(json.dumps(workflow_dict(targets=["not-valid"])))
    assert cli.main(["show-config", "--config", str(bad)]) == 1


def test_show_config_prints_effective_definition(
    tmp_path: Path, config_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert cli.main(["show-config", "--config", str(config_file)]) == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["name"] == "Benchmark"
    assert printed["runner"]["token_env"] == "CODSPEED_TOKEN"
