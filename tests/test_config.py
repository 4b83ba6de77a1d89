"""
Configuration Tests
===================

Defaults, YAML loading and override precedence.
"""

import logging
import sys

import pytest

from ttysrv.config import Settings, load_config, setup_logging
from ttysrv.errors import ConfigError
from ttysrv.stream import OverflowPolicy


class TestDefaults:
    """Tests for built-in default values."""
    
    def test_reference_defaults(self):
        settings = Settings()
        assert settings.serial.device == "/dev/ttyUSB0"
        assert settings.serial.baud == 115200
        assert settings.serial.read_size == 64
        assert settings.log_file.path == "ttysrv.log"
        assert settings.server.port == 666
    
    def test_hub_defaults(self):
        settings = Settings()
        assert settings.hub.subscriber_queue_size == 256
        assert settings.hub.overflow_policy is OverflowPolicy.DROP_OLDEST
        assert settings.hub.delivery_timeout is None
        assert settings.status.enabled is False


class TestLoadConfig:
    """Tests for load_config layering."""
    
    def test_no_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        settings = load_config()
        assert settings == Settings()
    
    def test_yaml_file(self, tmp_path):
        path = tmp_path / "ttysrv.yaml"
        path.write_text(
            "serial:\n"
            "  device: /dev/ttyACM0\n"
            "  baud: 9600\n"
            "hub:\n"
            "  overflow_policy: block\n"
            "  delivery_timeout: 2.5\n"
        )
        settings = load_config(str(path))
        assert settings.serial.device == "/dev/ttyACM0"
        assert settings.serial.baud == 9600
        assert settings.hub.overflow_policy is OverflowPolicy.BLOCK
        assert settings.hub.delivery_timeout == 2.5
        assert settings.server.port == 666
    
    def test_yaml_found_in_working_directory(self, tmp_path, monkeypatch):
        (tmp_path / "ttysrv.yaml").write_text("server:\n  port: 7001\n")
        monkeypatch.chdir(tmp_path)
        assert load_config().server.port == 7001
    
    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "ttysrv.yaml"
        path.write_text("server:\n  port: 7001\n")
        monkeypatch.setenv("TTYSRV_PORT", "7002")
        monkeypatch.setenv("TTYSRV_BAUD", "57600")
        monkeypatch.setenv("TTYSRV_OVERFLOW_POLICY", "disconnect")
        settings = load_config(str(path))
        assert settings.server.port == 7002
        assert settings.serial.baud == 57600
        assert settings.hub.overflow_policy is OverflowPolicy.DISCONNECT
    
    def test_status_port_env_enables_status(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("TTYSRV_STATUS_PORT", "9000")
        settings = load_config()
        assert settings.status.enabled is True
        assert settings.status.port == 9000
    
    def test_overrides_beat_env(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("TTYSRV_PORT", "7002")
        settings = load_config(overrides={"server": {"port": 7003}})
        assert settings.server.port == 7003
    
    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "nope.yaml"))
    
    def test_invalid_values(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigError):
            load_config(overrides={"server": {"port": 70000}})
        with pytest.raises(ConfigError):
            load_config(overrides={"hub": {"overflow_policy": "explode"}})
        with pytest.raises(ConfigError):
            load_config(overrides={"hub": {"subscriber_queue_size": 0}})
    
    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "ttysrv.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_config(str(path))


class TestSetupLogging:
    """Tests for log handler configuration."""
    
    @pytest.fixture
    def root(self, monkeypatch):
        monkeypatch.setattr(logging.root, "handlers", [])
        monkeypatch.setattr(logging.root, "level", logging.WARNING)
        return logging.root
    
    def test_logs_go_to_stderr_not_stdout(self, root):
        setup_logging(Settings())
        (handler,) = root.handlers
        assert handler.stream is sys.stderr
        assert root.level == logging.INFO
    
    def test_json_format(self, root):
        settings = Settings(logging={"level": "debug", "format": "json"})
        setup_logging(settings)
        record = logging.LogRecord("ttysrv.hub", logging.INFO, __file__, 1, "hello", None, None)
        line = root.handlers[0].format(record)
        assert line.startswith('{"ts": ')
        assert '"logger": "ttysrv.hub"' in line
        assert '"msg": "hello"' in line
        assert root.level == logging.DEBUG
    
    def test_unknown_level_falls_back_to_info(self, root):
        setup_logging(Settings(logging={"level": "chatty"}))
        assert root.level == logging.INFO
