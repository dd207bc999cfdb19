"""Tests for settings.py — .env + settings.toml loading and validation."""

from pathlib import Path

import pytest

from wafilebot.settings import MB, BotConfig, load_settings


class TestDefaults:
    def test_design_constants(self):
        cfg = BotConfig(bridge_url="ws://x")
        assert cfg.qr_throttle_window == 30
        assert cfg.qr_max_regenerations == 5
        assert cfg.qr_cooldown == 120
        assert cfg.settle_delay == 15
        assert cfg.reconnect_cooldown == 180
        assert cfg.teardown_timeout == 10
        assert cfg.status_timeout == 10
        assert cfg.inactivity_threshold == 900
        assert cfg.dedup_ttl == 30
        assert cfg.max_media_bytes == 15 * MB
        assert cfg.default_retrieval_limit == 5
        cfg.validate()

    def test_derived_paths(self, tmp_path: Path):
        cfg = BotConfig(config_dir=tmp_path, data_dir=tmp_path / "data")
        assert cfg.db_path == tmp_path / "data" / "wafilebot.db"
        assert cfg.qr_artifact_path == tmp_path / "data" / "latest-qr.png"
        assert cfg.qr_timestamp_path == tmp_path / "data" / "latest-qr.json"
        assert cfg.pid_file == tmp_path / "wafilebot.pid"


class TestValidate:
    def test_missing_bridge_url(self):
        with pytest.raises(ValueError, match="bridge_url"):
            BotConfig().validate()

    def test_settle_delay_must_be_shorter_than_cooldown(self):
        with pytest.raises(ValueError, match="settle_delay"):
            BotConfig(
                bridge_url="ws://x", settle_delay=200, reconnect_cooldown=180
            ).validate()

    def test_qr_window_must_be_shorter_than_qr_cooldown(self):
        with pytest.raises(ValueError, match="qr_throttle_window"):
            BotConfig(bridge_url="ws://x", qr_throttle_window=300).validate()

    def test_non_positive_constant(self):
        with pytest.raises(ValueError, match="dedup_ttl"):
            BotConfig(bridge_url="ws://x", dedup_ttl=0).validate()


class TestLoadSettings:
    def test_env_bridge_url(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("WAFILEBOT_BRIDGE_URL", "ws://bridge:3100/ws")
        cfg = load_settings(config_dir=tmp_path)
        assert cfg.bridge_url == "ws://bridge:3100/ws"
        assert cfg.config_dir == tmp_path
        assert cfg.data_dir == tmp_path / "data"

    def test_toml_overrides(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("WAFILEBOT_BRIDGE_URL", "ws://bridge/ws")
        (tmp_path / "settings.toml").write_text(
            "[bot]\n"
            "settle_delay = 5\n"
            "admin_port = 9000\n"
            'data_dir = "' + str(tmp_path / "elsewhere") + '"\n'
            'gemini_model = "gemini-2.0-flash"\n'
        )
        cfg = load_settings(config_dir=tmp_path)
        assert cfg.settle_delay == 5.0
        assert isinstance(cfg.settle_delay, float)
        assert cfg.admin_port == 9000
        assert cfg.data_dir == tmp_path / "elsewhere"
        assert cfg.gemini_model == "gemini-2.0-flash"

    def test_env_beats_toml(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("WAFILEBOT_BRIDGE_URL", "ws://from-env/ws")
        monkeypatch.setenv("WAFILEBOT_ADMIN_PORT", "8123")
        (tmp_path / "settings.toml").write_text(
            '[bot]\nbridge_url = "ws://from-toml/ws"\nadmin_port = 9000\n'
        )
        cfg = load_settings(config_dir=tmp_path)
        assert cfg.bridge_url == "ws://from-env/ws"
        assert cfg.admin_port == 8123

    def test_secret_in_toml_rejected(self, tmp_path: Path):
        (tmp_path / "settings.toml").write_text('[bot]\ngemini_api_key = "abc"\n')
        with pytest.raises(ValueError, match="GEMINI_API_KEY"):
            load_settings(config_dir=tmp_path)

    def test_secrets_from_env(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "g-key")
        monkeypatch.setenv("WAFILEBOT_ADMIN_TOKEN", "t0k")
        cfg = load_settings(config_dir=tmp_path)
        assert cfg.gemini_api_key == "g-key"
        assert cfg.admin_token == "t0k"

    def test_unknown_key_ignored(self, tmp_path: Path):
        (tmp_path / "settings.toml").write_text("[bot]\nno_such_setting = 1\n")
        cfg = load_settings(config_dir=tmp_path)
        assert not hasattr(cfg, "no_such_setting")

    def test_invalid_config_raises(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("WAFILEBOT_BRIDGE_URL", raising=False)
        with pytest.raises(ValueError):
            load_settings(config_dir=tmp_path)

    def test_validate_false_skips_checks(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("WAFILEBOT_BRIDGE_URL", raising=False)
        cfg = load_settings(config_dir=tmp_path, validate=False)
        assert cfg.bridge_url == ""
