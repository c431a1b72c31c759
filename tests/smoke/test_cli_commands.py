"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


def run_cli_command(args: list[str], env: dict | None = None, timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        args: Arguments after 'python -m src.cli.main'
        env: Extra environment variables
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    result = subprocess.run(
        [sys.executable, "-m", "src.cli.main", *args],
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
        env={**os.environ, "COLUMNS": "200", **(env or {})},
    )

    return result.returncode, result.stdout, result.stderr


@pytest.fixture
def cli_env(tmp_path):
    """Environment pointing the CLI at a throwaway SQLite file."""
    return {"LOGOS_DATABASE_URL": f"sqlite:///{tmp_path / 'logos.db'}", "LOGOS_LOG_LEVEL": "WARNING"}


@pytest.fixture
def objects_file(tmp_path):
    path = tmp_path / "objects.json"
    path.write_text(
        json.dumps(
            {
                "objects": [
                    {"object_id": "lex-house", "content": "house", "component": "LEX"},
                    {"object_id": "morph-walking", "content": "walking", "component": "MORPH"},
                ]
            }
        ),
        encoding="utf-8",
    )
    return path


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        """Main help should display without errors."""
        code, stdout, stderr = run_cli_command(["--help"])

        assert code == 0, f"Help failed: {stderr}"
        assert "logos" in stdout.lower()
        assert "Commands" in stdout

    @pytest.mark.parametrize("command", ["answer", "queue", "bottleneck", "stats"])
    def test_command_help(self, command):
        code, stdout, stderr = run_cli_command([command, "--help"])

        assert code == 0, f"{command} help failed: {stderr}"

    def test_db_help(self):
        code, stdout, stderr = run_cli_command(["db", "--help"])

        assert code == 0, f"db help failed: {stderr}"
        assert "init" in stdout


class TestCLIFlow:
    """Run the commands against a fresh database."""

    def test_full_flow(self, cli_env, objects_file):
        code, stdout, stderr = run_cli_command(["db", "init"], cli_env)
        assert code == 0, f"db init failed: {stderr}"

        code, stdout, stderr = run_cli_command(["objects", "load", str(objects_file)], cli_env)
        assert code == 0, f"objects load failed: {stderr}"
        assert "Loaded 2" in stdout

        code, stdout, stderr = run_cli_command(
            ["answer", "learner-1", "lex-house", "House", "--latency-ms", "1500"], cli_env
        )
        assert code == 0, f"answer failed: {stderr}"
        assert "Correct!" in stdout
        assert "Suggested cues: moderate" in stdout

        code, stdout, stderr = run_cli_command(["queue", "learner-1"], cli_env)
        assert code == 0, f"queue failed: {stderr}"
        assert "morph-walking" in stdout
        assert "Cues" in stdout

        code, stdout, stderr = run_cli_command(["queue", "learner-1", "--irt-top-k", "1"], cli_env)
        assert code == 0, f"queue --irt-top-k failed: {stderr}"

        code, stdout, stderr = run_cli_command(["bottleneck", "learner-1"], cli_env)
        assert code == 0, f"bottleneck failed: {stderr}"
        assert "Insufficient data" in stdout

        code, stdout, stderr = run_cli_command(["stats", "learner-1"], cli_env)
        assert code == 0, f"stats failed: {stderr}"

    def test_unknown_object_fails_gracefully(self, cli_env, objects_file):
        run_cli_command(["db", "init"], cli_env)

        code, stdout, stderr = run_cli_command(["answer", "learner-1", "missing", "house"], cli_env)

        assert code == 1
        assert "missing" in stdout

    def test_invalid_mode_fails_gracefully(self, cli_env, objects_file):
        run_cli_command(["db", "init"], cli_env)
        run_cli_command(["objects", "load", str(objects_file)], cli_env)

        code, stdout, stderr = run_cli_command(["answer", "learner-1", "lex-house", "house", "-m", "exam"], cli_env)

        assert code == 1
