"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


def run_cli_command(command: str, timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        command: The command to run (after 'python -m src.cli.lingo_cli')
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    full_command = f"{sys.executable} -m src.cli.lingo_cli {command}"

    result = subprocess.run(
        full_command,
        shell=True,
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=timeout,
        env={**os.environ, "COLUMNS": "160", "NO_COLOR": "1"},
    )

    return result.returncode, result.stdout, result.stderr


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        """Main help should display without errors."""
        code, stdout, stderr = run_cli_command("--help")

        assert code == 0, f"Help failed: {stderr}"
        assert "lingo" in stdout.lower()
        assert "Commands" in stdout

    def test_simulate_help(self):
        """Simulate command help should work."""
        code, stdout, stderr = run_cli_command("simulate --help")

        assert code == 0, f"Simulate help failed: {stderr}"


class TestCLIReview:
    """Test the scheduler replay."""

    def test_three_clean_answers_acquire(self):
        code, stdout, stderr = run_cli_command("review c c c")

        assert code == 0, f"Review failed: {stderr}"
        assert "Scheduler Replay" in stdout
        assert "acquired" in stdout

    def test_wrong_answer_from_acquired(self):
        code, stdout, stderr = run_cli_command("review w --status acquired --reps 4 --interval 10")

        assert code == 0, f"Review failed: {stderr}"
        assert "fragile" in stdout

    def test_unknown_outcome_code(self):
        """Unknown outcome codes should fail with a usage error."""
        code, stdout, stderr = run_cli_command("review c x")

        assert code != 0


class TestCLILevel:
    def test_level_runs(self):
        code, stdout, stderr = run_cli_command("level --acquired 160")

        assert code == 0, f"Level failed: {stderr}"
        assert "A2" in stdout

    def test_drop_back_reported(self):
        code, stdout, stderr = run_cli_command("level --acquired 160 --wrong-recent 4")

        assert code == 0, f"Level failed: {stderr}"
        assert "yes" in stdout


class TestCLIHealth:
    def test_health_score(self):
        code, stdout, stderr = run_cli_command("health acquired fragile")

        assert code == 0, f"Health failed: {stderr}"
        assert "65" in stdout

    def test_empty_health(self):
        code, stdout, stderr = run_cli_command("health")

        assert code == 0, f"Health failed: {stderr}"
        assert "50" in stdout


class TestCLISimulate:
    """Test the simulated session."""

    @pytest.mark.slow
    def test_simulate_runs(self):
        code, stdout, stderr = run_cli_command("simulate --seed 3")

        assert code == 0, f"Simulate failed: {stderr}"
        assert "Session Plan" in stdout
        assert "Session Summary" in stdout

    def test_simulate_short_session(self):
        code, stdout, stderr = run_cli_command("simulate --seed 1 --max-turns 2 --topic food")

        assert code == 0, f"Simulate failed: {stderr}"
        assert "food" in stdout
