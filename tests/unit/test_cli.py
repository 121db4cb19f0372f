"""Tests for Dirwatch CLI commands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import yaml
from typer.testing import CliRunner

from dirwatch import __version__
from dirwatch.cli import app

runner = CliRunner()


def write_connection(folder: Path, config_id: str, **extra) -> None:
    folder.mkdir(parents=True, exist_ok=True)
    raw = {
        "id": config_id,
        "name": config_id,
        "watch": {"directories": [str(folder)]},
        "reader": "TimestampTagsCsvReader",
        "extraction": {"strategy": "timestamp_tags"},
        **extra,
    }
    (folder / f"{config_id}.yaml").write_text(yaml.safe_dump(raw))


class TestCLICommands:
    """Test suite for CLI commands."""

    def test_version_command(self) -> None:
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_readers_command(self) -> None:
        result = runner.invoke(app, ["readers"])

        assert result.exit_code == 0
        assert "NarrowFileReader" in result.stdout
        assert "ConditionsCsvReader" in result.stdout

    def test_modes_command(self) -> None:
        result = runner.invoke(app, ["modes"])

        assert result.exit_code == 0
        assert "lite" in result.stdout
        assert "standard" in result.stdout

    def test_check_config_valid(self, tmp_path: Path) -> None:
        write_connection(tmp_path, "plant-a")

        result = runner.invoke(app, ["check-config", "--folder", str(tmp_path)])

        assert result.exit_code == 0
        assert "plant-a" in result.stdout
        assert "1 connection configurations are valid" in result.stdout

    def test_check_config_reader_mismatch(self, tmp_path: Path) -> None:
        write_connection(tmp_path, "plant-a", reader="NarrowFileReader")

        result = runner.invoke(app, ["check-config", "--folder", str(tmp_path)])

        assert result.exit_code == 1

    def test_check_config_duplicate_ids(self, tmp_path: Path) -> None:
        write_connection(tmp_path / "one", "same")
        write_connection(tmp_path / "two", "same")

        result = runner.invoke(
            app, ["check-config", "--folder", str(tmp_path / "one"), "--folder", str(tmp_path / "two")]
        )

        assert result.exit_code == 1

    def test_check_config_invalid_settings_value(self, tmp_path: Path) -> None:
        settings_file = tmp_path / "dirwatch.yaml"
        settings_file.write_text(yaml.safe_dump({"backend": {"page_size": 5000}}))
        write_connection(tmp_path / "connections", "plant-a")

        result = runner.invoke(
            app,
            ["check-config", "--config", str(settings_file), "--folder", str(tmp_path / "connections")],
        )

        assert result.exit_code == 1
        assert result.exception is None or isinstance(result.exception, SystemExit)
        assert "page_size" in result.output

    def test_run_rejects_unknown_mode(self) -> None:
        result = runner.invoke(app, ["run", "--mode", "turbo"])

        assert result.exit_code == 1

    @patch("dirwatch.cli.DirwatchAgent")
    def test_run_starts_agent(self, mock_agent: MagicMock, tmp_path: Path) -> None:
        result = runner.invoke(app, ["run", "--mode", "lite", "--folder", str(tmp_path)])

        assert result.exit_code == 0
        settings = mock_agent.call_args.args[0]
        assert settings.mode == "lite"
        assert settings.configuration_folders == [tmp_path]
        mock_agent.return_value.run.assert_called_once()
