"""
Tests for kql_console.cli module.

Tests command-line argument parsing, path validation, and main entry point.
"""

import pytest
from pathlib import Path
from unittest.mock import MagicMock, patch

from kql_console.cli import main, parse_args, validate_paths
from kql_console.models import BackendKind, TimeRange


@pytest.fixture
def tmp_config(tmp_path):
    """Create a temporary config file."""
    config_file = tmp_path / "settings.yaml"
    config_file.write_text("query_defaults:\n  duration: PT12H\n")
    return config_file


@pytest.fixture
def tmp_query(tmp_path):
    """Create a temporary query file."""
    query_file = tmp_path / "SigninFailures.kql"
    query_file.write_text("SigninLogs | where UserPrincipalName == '{{UserPrincipalName}}'")
    return query_file


class TestParseArgs:
    """Tests for parse_args function."""

    def test_parse_args_minimal(self):
        args = parse_args([])

        assert args.command is None
        assert args.config is None
        assert args.library is None
        assert args.verbose is False

    def test_parse_args_startup_options(self, tmp_path):
        args = parse_args([
            "-c", str(tmp_path / "settings.yaml"),
            "--library", str(tmp_path),
            "--duration", "P7D",
            "--max-rows", "250",
            "-v",
            "--log-format", "json",
        ])

        assert args.config == tmp_path / "settings.yaml"
        assert args.library == tmp_path
        assert args.duration == "P7D"
        assert args.max_rows == 250
        assert args.verbose is True
        assert args.log_format == "json"

    def test_parse_args_run_subcommand(self, tmp_query):
        args = parse_args([
            "run",
            "-b", "workspace",
            "-q", str(tmp_query),
            "-w", "ws-1",
            "-t", "UserPrincipalName=alice@contoso.com",
            "-t", "Filter=a=b",
            "-r", "P1D",
            "--rows", "5",
        ])

        assert args.command == "run"
        assert args.backend == "workspace"
        assert args.query_file == tmp_query
        assert args.workspace_id == "ws-1"
        assert args.token == [("UserPrincipalName", "alice@contoso.com"), ("Filter", "a=b")]
        assert args.time_range == "P1D"
        assert args.rows == 5

    def test_parse_args_bad_token(self, tmp_query):
        with pytest.raises(SystemExit) as exc_info:
            parse_args(["run", "-b", "hunting", "-q", str(tmp_query), "-t", "NoEquals"])

        assert exc_info.value.code == 2

    def test_parse_args_backend_choices(self, tmp_query):
        with pytest.raises(SystemExit):
            parse_args(["run", "-b", "splunk", "-q", str(tmp_query)])

    def test_parse_args_max_rows_positive(self):
        with pytest.raises(SystemExit):
            parse_args(["--max-rows", "0"])


class TestValidatePaths:
    """Tests for validate_paths function."""

    def test_validate_paths_all_exist(self, tmp_config, tmp_query, tmp_path):
        args = parse_args(["-c", str(tmp_config), "--library", str(tmp_path), "run", "-b", "hunting", "-q", str(tmp_query)])

        assert validate_paths(args) == []

    def test_validate_paths_none_given(self):
        assert validate_paths(parse_args([])) == []

    def test_validate_paths_multiple_missing(self, tmp_path):
        args = parse_args([
            "-c", str(tmp_path / "missing.yaml"),
            "--library", str(tmp_path / "no-library"),
            "run", "-b", "inventory", "-q", str(tmp_path / "missing.arg"),
        ])

        errors = validate_paths(args)

        assert len(errors) == 3
        assert any("Config file not found" in e for e in errors)
        assert any("Query library not found" in e for e in errors)
        assert any("Query file not found" in e for e in errors)


class TestMain:
    """Tests for main entry point."""

    def test_main_interactive(self, tmp_config):
        with patch("kql_console.cli.build_session") as build_session, \
                patch("kql_console.cli.run_console") as run_console:
            exit_code = main(["-c", str(tmp_config), "--max-rows", "50"])

        assert exit_code == 0
        config = build_session.call_args.args[0]
        assert config.query_defaults.duration == "PT12H"
        assert config.query_defaults.max_rows == 50
        run_console.assert_called_once_with(build_session.return_value)

    def test_main_run_subcommand(self, tmp_query):
        summary = MagicMock(failed=0)
        with patch("kql_console.cli.build_session") as build_session, \
                patch("kql_console.cli.run_once", return_value=summary) as run_once:
            exit_code = main([
                "run", "-b", "workspace", "-q", str(tmp_query), "-w", "ws-1",
                "-t", "UserPrincipalName=alice@contoso.com", "-r", "PT6H",
            ])

        assert exit_code == 0
        run_once.assert_called_once_with(
            build_session.return_value,
            tmp_query,
            BackendKind.WORKSPACE_QUERY,
            tokens={"UserPrincipalName": "alice@contoso.com"},
            workspace_id="ws-1",
            time_range=TimeRange.last("PT6H"),
            row_limit=None,
        )

    def test_main_run_failure_exit_code(self, tmp_query):
        with patch("kql_console.cli.build_session"), \
                patch("kql_console.cli.run_once", return_value=MagicMock(failed=1)):
            exit_code = main(["run", "-b", "hunting", "-q", str(tmp_query)])

        assert exit_code == 1

    def test_main_missing_paths(self, tmp_path, capsys):
        exit_code = main(["-c", str(tmp_path / "missing.yaml")])

        assert exit_code == 1
        assert "Config file not found" in capsys.readouterr().err

    def test_main_config_error(self, tmp_path, capsys):
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("query_defaults:\n  max_rows: -1\n")

        exit_code = main(["-c", str(config_file)])

        assert exit_code == 1
        assert "Invalid max_rows" in capsys.readouterr().err

    def test_main_invalid_duration_override(self, capsys):
        assert main(["--duration", "a day"]) == 1
        assert "Invalid duration" in capsys.readouterr().err

    def test_main_keyboard_interrupt(self):
        with patch("kql_console.cli.build_session"), \
                patch("kql_console.cli.run_console", side_effect=KeyboardInterrupt):
            assert main([]) == 130

    def test_main_unexpected_error(self, capsys):
        with patch("kql_console.cli.build_session"), \
                patch("kql_console.cli.run_console", side_effect=RuntimeError("boom")):
            exit_code = main([])

        assert exit_code == 1
        assert "Error: boom" in capsys.readouterr().err

    def test_main_bad_time_range(self, tmp_query, capsys):
        with patch("kql_console.cli.build_session"), patch("kql_console.cli.run_once") as run_once:
            exit_code = main(["run", "-b", "hunting", "-q", str(tmp_query), "-r", "soon"])

        assert exit_code == 1
        run_once.assert_not_called()

    def test_main_non_numeric_timeout(self, tmp_path, capsys):
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("threat_hunting:\n  timeout_seconds: soon\n")

        exit_code = main(["-c", str(config_file)])

        assert exit_code == 1
        assert "Invalid timeout_seconds" in capsys.readouterr().err

    def test_main_closes_session(self, tmp_query):
        with patch("kql_console.cli.build_session") as build_session, \
                patch("kql_console.cli.run_once", side_effect=RuntimeError("boom")):
            main(["run", "-b", "hunting", "-q", str(tmp_query)])

        build_session.return_value.close.assert_called_once_with()
