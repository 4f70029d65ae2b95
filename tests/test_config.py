"""
Tests for configuration loading and structured logging
"""

import json
import logging

import pytest

from coin_ledger import config as config_module
from coin_ledger.config import LedgerConfig, get_config, reload_config
from coin_ledger.logging_config import JSONFormatter, log_action, setup_logging
from coin_ledger.system import LedgerSystem
from coin_ledger.storage import InMemoryLedgerStore
from coin_ledger.transactions import TransferStrategy


class TestLedgerConfig:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("COINLEDGER_LEDGER_BACKEND", raising=False)
        cfg = LedgerConfig(_env_file=None)

        assert cfg.ledger_backend == "sqlite"
        assert cfg.transfer_strategy == "sequential"
        assert cfg.store_max_retries == 25
        assert cfg.redis_key_prefix == "users:"
        assert cfg.api_port == 8090

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("COINLEDGER_LEDGER_BACKEND", "redis")
        monkeypatch.setenv("COINLEDGER_REDIS_PORT", "6380")
        monkeypatch.setenv("COINLEDGER_TRANSFER_STRATEGY", "saga")

        cfg = LedgerConfig(_env_file=None)

        assert cfg.ledger_backend == "redis"
        assert cfg.redis_port == 6380
        assert cfg.transfer_strategy == "saga"

    def test_describe_credentials_hides_values(self):
        cfg = LedgerConfig(_env_file=None, discord_bot_token="secret-token", discord_client_id="")
        described = cfg.describe_credentials()

        assert described["DISCORD_BOT_TOKEN"] == "Found"
        assert described["DISCORD_CLIENT_ID"] == "Not Found!"
        assert "secret-token" not in described.values()

    def test_can_register_commands(self):
        assert not LedgerConfig(_env_file=None, discord_bot_token="t").can_register_commands
        assert LedgerConfig(
            _env_file=None, discord_bot_token="t", discord_client_id="c", discord_guild_id="g"
        ).can_register_commands

    def test_reload_config(self, monkeypatch):
        original = get_config()
        monkeypatch.setenv("COINLEDGER_API_PORT", "9999")
        try:
            reloaded = reload_config()
            assert reloaded.api_port == 9999
            assert get_config() is reloaded
        finally:
            config_module.config = original


class TestLedgerSystem:

    def test_wires_strategy_from_config(self):
        cfg = LedgerConfig(_env_file=None, ledger_backend="memory", transfer_strategy="SAGA")
        system = LedgerSystem(cfg)

        assert isinstance(system.store, InMemoryLedgerStore)
        assert system.engine.transfer_strategy == TransferStrategy.SAGA
        assert system.router.engine is system.engine

    def test_uses_injected_store(self):
        store = InMemoryLedgerStore()
        system = LedgerSystem(LedgerConfig(_env_file=None), store=store)
        assert system.engine.store is store

    def test_invalid_strategy(self):
        with pytest.raises(ValueError):
            LedgerSystem(LedgerConfig(_env_file=None, transfer_strategy="yolo"), store=InMemoryLedgerStore())


class TestLogging:

    def test_json_formatter_includes_structured_fields(self):
        logger = logging.getLogger("coinledger.test.json")
        record = logger.makeRecord(logger.name, logging.INFO, __file__, 1, "Balance adjusted", (), None)
        record.action = "adjust"
        record.resource = "account:42"
        record.extra = {"delta": 5}

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["message"] == "Balance adjusted"
        assert entry["action"] == "adjust"
        assert entry["resource"] == "account:42"
        assert entry["extra"] == {"delta": 5}
        assert "user_id" not in entry

    def test_setup_logging_replaces_handlers(self):
        logger = setup_logging("DEBUG", "json", logger_name="coinledger.test.setup")
        logger = setup_logging("WARNING", "text", logger_name="coinledger.test.setup")

        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_log_action_attaches_fields(self, caplog):
        logger = logging.getLogger("coinledger.test.action")
        with caplog.at_level(logging.INFO, logger="coinledger.test.action"):
            log_action(logger, "info", "Transfer completed", user_id="1", action="transfer",
                       extra={"amount": 3})

        record = caplog.records[-1]
        assert record.getMessage() == "Transfer completed"
        assert record.user_id == "1"
        assert record.action == "transfer"
        assert record.extra == {"amount": 3}
