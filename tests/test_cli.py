"""
Tests for the CLI.
"""

import pytest
import typer
from typer.testing import CliRunner

from fdc_relayer import __version__
from fdc_relayer.cli import _run, app
from fdc_relayer.config import get_settings

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ["SOURCE_PRIVATE_KEY", "COSTON2_PK", "SAPPHIRE_PK", "DESTINATION_PRIVATE_KEY"]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_round_for_timestamp():
    result = runner.invoke(app, ["round", "1658430270"])
    assert result.exit_code == 0
    assert "Voting round: 3" in result.output
    assert "Starts: 1658430270" in result.output
    assert "Ends: 1658430360" in result.output


def test_round_defaults_to_now():
    result = runner.invoke(app, ["round"])
    assert result.exit_code == 0
    assert "Voting round:" in result.output


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_attempts_empty():
    result = runner.invoke(app, ["attempts"])
    assert result.exit_code == 0
    assert "No attempts recorded." in result.output


def test_relay_without_keys_reports_config_stage():
    result = runner.invoke(app, ["relay", "0x" + "ab" * 32, "--mode", "direct"])
    assert result.exit_code == 1
    assert "[config] Missing required settings" in result.output
    assert "Retry-safe: no" in result.output


def test_relay_rejects_unknown_mode():
    result = runner.invoke(app, ["relay", "0x" + "ab" * 32, "--mode", "bridge"])
    assert result.exit_code != 0


def test_unexpected_error_reported_with_stage(capsys):
    async def rpc_down():
        raise ConnectionError("rpc down")

    with pytest.raises(typer.Exit) as exc:
        _run(rpc_down(), "sync_root")

    assert exc.value.exit_code == 1
    err = capsys.readouterr().err
    assert "[sync_root] ConnectionError: rpc down" in err
    assert "Retry-safe: yes" in err


def test_unexpected_relay_error_not_retry_safe(capsys):
    async def rpc_down():
        raise ConnectionError("rpc down")

    with pytest.raises(typer.Exit):
        _run(rpc_down(), "relay", retry_safe=False)

    assert "Retry-safe: no" in capsys.readouterr().err
