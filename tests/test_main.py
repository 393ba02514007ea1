"""Tests for the command line entry point."""

import json
import logging
from unittest.mock import patch

import pytest

from homiegraf.main import build_parser, cli_overrides, main, resolve_log_level, run
from homiegraf.utils.config import BridgeConfig


class TestParser:
    """Tests for argument parsing."""

    def test_short_flags(self):
        args = build_parser().parse_args([
            "-x", "telegraf", "-t", "tele.lan", "-p", "8094", "-r", "tcp",
            "-m", "broker.lan", "-q", "1884", "-o", "house",
        ])
        assert cli_overrides(args) == {
            "push_method": "telegraf",
            "telegraf_host": "tele.lan",
            "telegraf_port": 8094,
            "telegraf_transport": "tcp",
            "mqtt_host": "broker.lan",
            "mqtt_port": 1884,
            "mqtt_topic": "house",
            "influx_host": None,
            "influx_port": None,
            "influx_bucket": None,
            "influx_org": None,
            "measurement": None,
        }

    def test_influx_flags(self):
        args = build_parser().parse_args([
            "-x", "influx", "-f", "db.lan", "-i", "8087", "-b", "sensors", "-g", "home",
        ])
        overrides = cli_overrides(args)
        assert overrides["influx_host"] == "db.lan"
        assert overrides["influx_port"] == 8087
        assert overrides["influx_bucket"] == "sensors"
        assert overrides["influx_org"] == "home"

    def test_debug_counts(self):
        assert build_parser().parse_args(["-dd"]).debug == 2

    def test_invalid_transport_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["-r", "http"])

    def test_log_level_case_insensitive(self):
        assert build_parser().parse_args(["--log-level", "warning"]).log_level == "WARNING"


class TestResolveLogLevel:
    """Tests for log level precedence."""

    def test_default_info(self):
        assert resolve_log_level(None, 0, {}) == logging.INFO

    def test_cli_level_wins(self):
        env = {"HOMIEGRAF_LEVEL": "DEBUG"}
        assert resolve_log_level("ERROR", 2, env, "DEBUG") == logging.ERROR

    def test_debug_flag_beats_env(self):
        assert resolve_log_level(None, 1, {"HOMIEGRAF_LEVEL": "ERROR"}) == logging.DEBUG

    def test_env_beats_config(self):
        assert resolve_log_level(None, 0, {"HOMIEGRAF_LEVEL": "warning"}, "DEBUG") == logging.WARNING

    def test_config_level(self):
        assert resolve_log_level(None, 0, {}, "error") == logging.ERROR

    def test_unknown_name_falls_back(self):
        assert resolve_log_level(None, 0, {"HOMIEGRAF_LEVEL": "chatty"}) == logging.INFO


class TestMain:
    """Tests for main() startup and shutdown paths."""

    def test_invalid_config_exits_1(self, tmp_config):
        tmp_config.write_text(json.dumps({"push_method": "kafka"}))
        with pytest.raises(SystemExit) as exc:
            main(["--config", str(tmp_config)])
        assert exc.value.code == 1

    @patch("homiegraf.main.run")
    def test_cli_overrides_file(self, run_mock, tmp_config):
        tmp_config.write_text(json.dumps({"mqtt_host": "file.lan", "measurement": "x"}))
        with pytest.raises(SystemExit) as exc:
            main(["--config", str(tmp_config), "-m", "cli.lan"])
        assert exc.value.code == 0
        config = run_mock.call_args.args[0]
        assert config.get("mqtt_host") == "cli.lan"
        assert config.get("measurement") == "x"

    @patch("homiegraf.main.run", side_effect=KeyboardInterrupt)
    def test_ctrl_c_exits_cleanly(self, run_mock, tmp_config):
        with pytest.raises(SystemExit) as exc:
            main(["--config", str(tmp_config)])
        assert exc.value.code == 0

    @patch("homiegraf.main._get_error_log_path")
    @patch("homiegraf.main.run", side_effect=RuntimeError("broken"))
    def test_fatal_error_logged(self, run_mock, log_path, tmp_config, tmp_path):
        log_path.return_value = tmp_path / "errors.log"
        with pytest.raises(SystemExit) as exc:
            main(["--config", str(tmp_config)])
        assert exc.value.code == 1
        assert "RuntimeError: broken" in (tmp_path / "errors.log").read_text()


class TestRun:
    """Tests for run() wiring."""

    @patch("homiegraf.main.time.sleep", side_effect=KeyboardInterrupt)
    @patch("homiegraf.main.HomieSubscriber")
    @patch("homiegraf.main.create_forwarder")
    def test_run_cleans_up(self, create_forwarder, subscriber_cls, sleep, tmp_config):
        forwarder = create_forwarder.return_value
        subscriber = subscriber_cls.from_config.return_value
        subscriber.start.return_value = True
        with pytest.raises(KeyboardInterrupt):
            run(BridgeConfig(tmp_config, environ={}))
        subscriber.stop.assert_called_once()
        forwarder.close.assert_called_once()

    @patch("homiegraf.main.HomieSubscriber")
    @patch("homiegraf.main.create_forwarder")
    def test_run_fails_when_subscriber_does_not_start(self, create_forwarder, subscriber_cls,
                                                      tmp_config):
        subscriber_cls.from_config.return_value.start.return_value = False
        with pytest.raises(RuntimeError):
            run(BridgeConfig(tmp_config, environ={}))
        create_forwarder.return_value.close.assert_called_once()
