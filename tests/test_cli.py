from pathlib import Path

import pytest
from typer.testing import CliRunner

from ollabridge import __version__, cli
from ollabridge import config as config_module
from ollabridge.config import BridgeSettings


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(cli, "setup_logging", lambda **_: None)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(
        config_module, "HOME_CONFIG_PATH", tmp_path / "home" / "ollabridge.toml"
    )


def test_version() -> None:
    result = CliRunner().invoke(cli.create_app(), ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_missing_token_exits_with_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    result = CliRunner().invoke(cli.create_app(), [])
    assert result.exit_code == 1
    assert "Missing bot token" in result.output


def test_runs_bridge_with_loaded_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[BridgeSettings] = []

    async def fake_run_bridge(settings: BridgeSettings) -> None:
        seen.append(settings)

    monkeypatch.setattr(cli, "run_bridge", fake_run_bridge)
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("OLLAMA_MODEL", "llama3")

    result = CliRunner().invoke(cli.create_app(), [])

    assert result.exit_code == 0
    assert len(seen) == 1
    assert seen[0].bot_token == "123:abc"
    assert seen[0].ollama_model == "llama3"
