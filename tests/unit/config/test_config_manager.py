"""Tests for YAML configuration loading."""

from pathlib import Path

import pytest
import yaml

from config.config_manager import ConfigManager, deep_merge
from src.domain.exceptions import ConfigurationError

SHIPPED_CONFIG_DIR = Path(__file__).resolve().parents[3] / "config"


def write(path, data) -> None:
    path.write_text(yaml.safe_dump(data))


@pytest.fixture
def config_dir(tmp_path):
    write(
        tmp_path / "base.yaml",
        {
            "server": {"port": 5000},
            "engine": {"timeframes": ["5m", "15m"], "ema_periods": [50, 200]},
            "logging": {"level": "INFO"},
            "presets": ["15m_above_50_bullish"],
        },
    )
    return tmp_path


class TestConfigManager:
    def test_loads_defaults(self, config_dir) -> None:
        config = ConfigManager(config_dir, env="dev").load()
        assert config.server.port == 5000
        assert config.server.websocket_path == "/ws"
        assert config.engine.ema_periods == [50, 200]
        assert config.engine.equality_tolerance == 1e-9
        assert config.engine.strict_ordering is True
        assert config.delivery.reconnect_delay_sec == 3.0
        assert config.database is None
        assert config.presets == ["15m_above_50_bullish"]

    def test_env_and_secrets_override(self, config_dir) -> None:
        write(config_dir / "prod.yaml", {"server": {"port": 8080}, "database": {"host": "db", "user": "u"}})
        write(config_dir / "secrets.yaml", {"database": {"password": "s3cret"}})

        config = ConfigManager(config_dir, env="prod").load()

        assert config.server.port == 8080
        assert config.server.host == "0.0.0.0"
        assert config.database.dsn == "postgresql://u:s3cret@db:5432/signalpro"

    def test_missing_base(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            ConfigManager(tmp_path).load()

    @pytest.mark.parametrize("periods", [[200, 50], [50], [0, 200], [50, 50]])
    def test_bad_ema_periods(self, periods) -> None:
        with pytest.raises(ConfigurationError, match="ema_periods"):
            ConfigManager().load_dict({"engine": {"ema_periods": periods}})

    def test_unsupported_timeframe(self) -> None:
        with pytest.raises(ConfigurationError, match="1h"):
            ConfigManager().load_dict({"engine": {"timeframes": ["5m", "1h"]}})

    def test_notifications(self) -> None:
        config = ConfigManager().load_dict(
            {
                "notifications": [
                    {"channel": "Telegram", "bot_token": "t", "chat_id": "c"},
                    {"channel": "webhook", "enabled": False, "url": "https://x.test"},
                ]
            }
        )
        telegram, webhook = config.notifications
        assert telegram.channel == "telegram"
        assert telegram.enabled
        assert telegram.settings == {"bot_token": "t", "chat_id": "c"}
        assert not webhook.enabled

    def test_email_and_sms_channels(self) -> None:
        config = ConfigManager().load_dict(
            {"notifications": [{"channel": "email", "smtp_host": "mx"}, {"channel": "sms", "enabled": False}]}
        )
        assert [(n.channel, n.enabled) for n in config.notifications] == [("email", True), ("sms", False)]

    def test_unknown_notification_channel(self) -> None:
        with pytest.raises(ConfigurationError, match="pager"):
            ConfigManager().load_dict({"notifications": [{"channel": "pager"}]})

    def test_channel_enabled_must_be_boolean(self) -> None:
        with pytest.raises(ConfigurationError, match="enabled must be true or false"):
            ConfigManager().load_dict({"notifications": [{"channel": "webhook", "enabled": "no"}]})

    def test_instruments(self) -> None:
        config = ConfigManager().load_dict(
            {
                "instruments": [
                    {"symbol": "NIFTY50", "name": "Nifty 50"},
                    {"symbol": "USDINR", "asset_class": "FOREX", "enabled": False},
                ]
            }
        )
        nifty, usdinr = config.instruments
        assert (nifty.symbol, nifty.name, nifty.asset_class, nifty.exchange, nifty.enabled) == (
            "NIFTY50",
            "Nifty 50",
            "future",
            "NSE",
            True,
        )
        assert usdinr.asset_class == "forex"
        assert not usdinr.enabled

    @pytest.mark.parametrize(
        "entry, message",
        [
            ({"name": "No symbol"}, "needs a symbol"),
            ({"symbol": "X", "asset_class": "crypto"}, "Unknown asset class"),
            ({"symbol": "X", "enabled": "false"}, "enabled must be true or false"),
        ],
    )
    def test_bad_instrument(self, entry, message) -> None:
        with pytest.raises(ConfigurationError, match=message):
            ConfigManager().load_dict({"instruments": [entry]})

    def test_bad_value_wrapped(self) -> None:
        with pytest.raises(ConfigurationError):
            ConfigManager().load_dict({"server": {"port": "not-a-port"}})

    def test_shipped_config_loads(self) -> None:
        for env in ("dev", "prod"):
            config = ConfigManager(SHIPPED_CONFIG_DIR, env=env).load()
            assert config.presets
            assert "Nifty 50" in [i.name for i in config.instruments]
        assert ConfigManager(SHIPPED_CONFIG_DIR, env="dev").load().feed.simulate


def test_deep_merge_keeps_sibling_keys() -> None:
    merged = deep_merge(
        {"engine": {"timeframes": ["5m"], "ema_periods": [50, 200]}, "presets": ["a", "b"]},
        {"engine": {"ema_periods": [20, 100]}, "presets": ["c"]},
    )
    assert merged == {"engine": {"timeframes": ["5m"], "ema_periods": [20, 100]}, "presets": ["c"]}


def test_non_mapping_layer_rejected(config_dir) -> None:
    (config_dir / "dev.yaml").write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError, match="mapping"):
        ConfigManager(config_dir, env="dev").load()
