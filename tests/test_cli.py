"""Tests for CLI entry point."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from lending_cache import __version__
from lending_cache.cli import app
from lending_cache.upstream.external import ExternalPriceSource

runner = CliRunner()


@pytest.fixture()
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text("upstream:\n  rpc_url: http://ledger.test/rpc\n")
    return path


@pytest.fixture()
def fake_client(mocker, upstream):
    mocker.patch("lending_cache.cli.LedgerClient", return_value=upstream)
    return upstream


def test_cli_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"lending-cache {__version__}" in result.stdout


def test_cli_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "refresh" in result.stdout


def test_cli_refresh(config_path, fake_client):
    result = runner.invoke(app, ["refresh", "--config", str(config_path)])
    assert result.exit_code == 0
    assert "5 successful, 0 failed, 5 total" in result.stdout
    assert fake_client.closed is True


def test_cli_refresh_reports_failures(config_path, fake_client):
    fake_client.fail.add("asset_prices")
    result = runner.invoke(app, ["refresh", "--config", str(config_path)])
    assert result.exit_code == 1
    assert "4 successful, 1 failed, 5 total" in result.stdout


def test_cli_clear_cache(config_path, fake_client):
    result = runner.invoke(app, ["clear-cache", "--config", str(config_path)])
    assert result.exit_code == 0
    assert "Cleared 0 cache keys" in result.stdout


def test_cli_health(config_path, fake_client):
    result = runner.invoke(app, ["health", "--config", str(config_path)])
    assert result.exit_code == 0
    assert '"healthy": true' in result.stdout


def test_cli_missing_config_uses_defaults(tmp_path, fake_client):
    result = runner.invoke(app, ["refresh", "--config", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 0


def test_cli_wires_external_price_fallback(config_path, mocker, upstream):
    ledger = mocker.patch("lending_cache.cli.LedgerClient", return_value=upstream)
    runner.invoke(app, ["refresh", "--config", str(config_path)])
    assert isinstance(ledger.call_args.kwargs["price_fallback"], ExternalPriceSource)


def test_cli_disabled_price_fallback(tmp_path, mocker, upstream):
    path = tmp_path / "config.yaml"
    path.write_text("upstream:\n  price_fallback:\n    enabled: false\n")
    ledger = mocker.patch("lending_cache.cli.LedgerClient", return_value=upstream)
    runner.invoke(app, ["refresh", "--config", str(path)])
    assert ledger.call_args.kwargs["price_fallback"] is None
