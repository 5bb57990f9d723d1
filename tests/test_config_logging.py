"""
Tests for environment configuration and structured logging
"""

import json
import logging
from unittest.mock import MagicMock

from peer_lending import config as config_module
from peer_lending.config import LendingConfig, reload_config
from peer_lending.logging_config import JSONFormatter, setup_logging, log_action


class TestLendingConfig:
    
    def test_defaults(self):
        config = LendingConfig()
        
        assert config.storage_type == "memory"
        assert config.default_currency == "NGN"
        assert config.enable_audit_logging is True
    
    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("PEER_LENDING_STORAGE_TYPE", "sqlite")
        monkeypatch.setenv("PEER_LENDING_PASSWORD_MIN_LENGTH", "12")
        
        try:
            config = reload_config()
            assert config.storage_type == "sqlite"
            assert config.password_min_length == 12
            assert config_module.get_config() is config
        finally:
            monkeypatch.delenv("PEER_LENDING_STORAGE_TYPE")
            monkeypatch.delenv("PEER_LENDING_PASSWORD_MIN_LENGTH")
            reload_config()


class TestJSONFormatter:
    
    def _record(self, **attrs):
        record = logging.LogRecord("peer_lending.loans", logging.INFO, __file__, 1,
                                   "Loan approved", (), None)
        for key, value in attrs.items():
            setattr(record, key, value)
        return record
    
    def test_structured_fields(self):
        entry = json.loads(JSONFormatter().format(self._record(
            user_id="loaner-1", action="APPROVE", resource="loan:1"
        )))
        
        assert entry["message"] == "Loan approved"
        assert entry["level"] == "INFO"
        assert entry["user_id"] == "loaner-1"
        assert entry["action"] == "APPROVE"
        assert entry["resource"] == "loan:1"
    
    def test_omits_missing_fields(self):
        entry = json.loads(JSONFormatter().format(self._record()))
        
        assert "user_id" not in entry
        assert "correlation_id" not in entry


class TestLogAction:
    
    def test_attaches_context(self):
        logger = MagicMock()
        
        log_action(logger, "info", "hello", user_id="u1", action="LOGIN",
                   extra={"email": "a@b.c"})
        
        level, message = logger.log.call_args[0]
        assert level == logging.INFO
        assert message == "hello"
        assert logger.log.call_args[1]["extra"] == {
            "user_id": "u1", "action": "LOGIN", "extra": {"email": "a@b.c"}
        }
    
    def test_context_reaches_formatter(self):
        logger = logging.getLogger("peer_lending.log_action_test")
        records = []
        handler = logging.Handler()
        handler.emit = records.append
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        try:
            log_action(logger, "warning", "Failed login", user_id="u1", resource="user:u1")
        finally:
            logger.removeHandler(handler)
        
        entry = json.loads(JSONFormatter().format(records[0]))
        assert entry["level"] == "WARNING"
        assert entry["resource"] == "user:u1"
        assert "action" not in entry
    
    def test_setup_logging_replaces_handlers(self):
        setup_logging("DEBUG", logger_name="peer_lending.setup_test", log_format="text")
        logger = setup_logging("WARNING", logger_name="peer_lending.setup_test")
        
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.level == logging.WARNING
        assert logger.propagate is False
