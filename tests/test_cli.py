"""
Unit tests for the Chhaya CLI.

These tests verify that the command-line interface:
1. Returns a non-zero exit code for a missing input folder
2. Completes a dry-run and a field listing even when snapshots cannot be read
3. Rejects a projection run without variables

"""

import subprocess
import sys


# ──────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────

def run_cli(*args):
    return subprocess.run(
        [sys.executable, "-m", "chhaya.cli", *args],
        capture_output=True,
        text=True,
    )


# ──────────────────────────────────────────────────────────────
# Tests
# ──────────────────────────────────────────────────────────────

def test_cli_invalid_folder(tmp_path):
    """Check that the CLI returns a non-zero exit code for a non-existent folder."""

    result = run_cli(
        "--base-dir", "/non/existent/path",
        "--folder-name", "output_999",
        "-n", "1",
        "--variables", "rho",
        "--output-dir", str(tmp_path),
    )

    assert result.returncode != 0
    assert "input folder not found" in result.stderr.lower()


def test_cli_list_fields_unreadable_snapshot(tmp_path):
    """An unreadable snapshot is logged, and the listing still exits cleanly."""

    (tmp_path / "run").mkdir()
    result = run_cli(
        "--base-dir", str(tmp_path),
        "--folder-name", "run",
        "-n", "1",
        "--list-fields",
    )

    assert result.returncode == 0
    assert "no fields discovered" in result.stdout.lower()


def test_cli_dry_run_continues_on_failed_output(tmp_path):
    """Per-output failures are logged and skipped; the run itself succeeds."""

    (tmp_path / "run").mkdir()
    result = run_cli(
        "--base-dir", str(tmp_path),
        "--folder-name", "run",
        "-n", "1-2",
        "--variables", "rho",
        "--dry-run",
        "--output-dir", str(tmp_path / "maps"),
    )

    assert result.returncode == 0
    assert "unexpected worker error" in result.stderr.lower()
    assert not (tmp_path / "maps").exists()


def test_cli_requires_variables(tmp_path):
    (tmp_path / "run").mkdir()
    result = run_cli("--base-dir", str(tmp_path), "--folder-name", "run", "-n", "1")

    assert result.returncode == 2
    assert "--variables" in result.stderr
