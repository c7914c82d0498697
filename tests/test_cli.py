"""Tests for the command line interface."""

from typer.testing import CliRunner

from layout_foundry.cli import app

runner = CliRunner()


def test_archive_rejects_negative_keep(monkeypatch):
    def fail_if_called(*args, **kwargs):
        raise AssertionError("store must not be reached")

    monkeypatch.setattr(
        "layout_foundry.cli.ModuleVersionStore.archive_old_versions", fail_if_called
    )
    result = runner.invoke(app, ["archive", "mod-1", "--keep", "-1"])

    assert result.exit_code == 2
    assert not isinstance(result.exception, ValueError)


def test_sign_prints_grant():
    result = runner.invoke(app, ["sign", "abc.png", "--ttl-ms", "1000"])

    assert result.exit_code == 0
    assert "abc.png" in result.output
