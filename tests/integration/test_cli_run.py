from __future__ import annotations

import json
from pathlib import Path

import pytest

from cutoff_portal.cli.__main__ import main as cli_main
from cutoff_portal.logging.init import reset_logging


@pytest.fixture(autouse=True)
def _fresh_logger():
    # handler must bind to the captured stdout of each test
    reset_logging()
    yield
    reset_logging()


def _summary(out: str) -> str:
    lines = [line for line in out.splitlines() if line.startswith("SUMMARY ")]
    assert len(lines) == 1
    return lines[0]


def test_live_run_exit_zero(populated_workdir: Path, capsys):
    code = cli_main(["--config", str(populated_workdir)])
    out = capsys.readouterr().out

    assert code == 0
    assert _summary(out).startswith(
        "SUMMARY files=2 success=2 failed=0 skipped=0 records=4 persisted=3 warnings=0 errors=0 elapsed_sec="
    )
    assert "INFO mode=live records=4 persisted=3" in out


def test_partial_failure_exit_two(populated_workdir: Path, temp_workdir: Path, capsys):
    (temp_workdir / "cutoffs" / "KEA_2024" / "KEA_2024_R2.xlsx").write_bytes(b"corrupt")
    code = cli_main(["--config", str(populated_workdir)])
    out = capsys.readouterr().out

    assert code == 2
    assert "failed=1" in _summary(out)
    assert "ERROR KEA_2024_R2.xlsx: cannot open workbook" in out
    assert list((temp_workdir / "logs").glob("errors-*.log"))


def test_dry_run(populated_workdir: Path, temp_workdir: Path, capsys):
    (temp_workdir / "data" / "portal.db").unlink()
    code = cli_main(["--config", str(populated_workdir), "--dry-run"])
    out = capsys.readouterr().out

    assert code == 0
    assert "mode=dry-run" in out
    assert "persisted=0" in _summary(out)
    assert not (temp_workdir / "data" / "portal.db").exists()


def test_missing_config_exit_one(temp_workdir: Path, capsys):
    code = cli_main(["--config", str(temp_workdir / "config" / "nope.yml")])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR config: config file not found" in out


def test_missing_directory_exit_one(write_config: Path, temp_workdir: Path, capsys):
    (temp_workdir / "cutoffs").rmdir()
    code = cli_main(["--config", str(write_config)])
    out = capsys.readouterr().out
    assert code == 1
    assert "ERROR directory not found" in out


def test_env_file_overrides_config(populated_workdir: Path, temp_workdir: Path, monkeypatch, capsys):
    # setenv first so the value written by .env is removed again after the test
    monkeypatch.setenv("CUTOFF_DIRECTORY", "unused")
    (temp_workdir / ".env").write_text("CUTOFF_DIRECTORY=./elsewhere\n", encoding="utf-8")
    code = cli_main(["--config", str(populated_workdir)])
    out = capsys.readouterr().out
    assert code == 1
    assert "directory not found: elsewhere" in out


def test_debug_flag(populated_workdir: Path, capsys):
    code = cli_main(["--config", str(populated_workdir), "--debug", "--dry-run"])
    out = capsys.readouterr().out
    assert code == 0
    assert "DEBUG debug mode enabled" in out


def test_inspect_data(populated_workdir: Path, capsys):
    code = cli_main(["--config", str(populated_workdir), "--inspect-data"])
    out = capsys.readouterr().out
    assert code == 0
    assert "FILE: AIQ_UG_2024_R1.xlsx category=AIQ_UG year=2024 round=R1 status=pending" in out
    assert "  SHEET: Sheet1 rows=12 layout=row_group" in out
    assert "  SHEET: Sheet1 rows=4 layout=kea" in out


def test_search_prints_json(populated_workdir: Path, capsys):
    code = cli_main([
        "--config", str(populated_workdir),
        "search", "--category", "AIQ_UG", "--year", "2024", "--round", "R1", "--college", "xyz",
    ])
    out = capsys.readouterr().out
    assert code == 0
    payload = json.loads(out[out.index("{"):])
    assert payload["success"] is True
    assert [item["cutoff_rank"] for item in payload["data"]] == [101, 102]
    assert payload["filters"]["college"] == "xyz"


def test_search_missing_round_exit_one(populated_workdir: Path, capsys):
    code = cli_main([
        "--config", str(populated_workdir),
        "search", "--category", "AIQ_UG", "--year", "2024", "--round", "R9",
    ])
    out = capsys.readouterr().out
    assert code == 1
    assert json.loads(out[out.index("{"):]) == {"success": False, "error": "Round file not found"}
