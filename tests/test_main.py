"""
CLI and logging setup tests
"""

import json
import logging

from tailhub.common.logging_setup import JsonFormatter, get_service_logger, set_log_level
from tailhub.main import build_parser, main


# ============================================================================
# CLI
# ============================================================================

def test_dry_run_prints_config(tmp_path, capsys):
    path = tmp_path / "config.yaml"
    path.write_text("discovery:\n  target_name: OtherTail\n")

    assert main(["run", "--config", str(path), "--dry-run"]) == 0

    out = capsys.readouterr().out
    assert "Dry run mode - configuration valid" in out
    assert "target_name: OtherTail" in out


def test_invalid_config_exits_with_error(tmp_path, capsys):
    path = tmp_path / "config.yaml"
    path.write_text("connection:\n  retry_delay_s: -1\n")

    assert main(["run", "--config", str(path), "--dry-run"]) == 1
    assert "Error loading configuration" in capsys.readouterr().out


def test_status_unreachable_hub(capsys):
    assert main(["status", "--url", "http://127.0.0.1:1"]) == 1
    assert "Hub not reachable" in capsys.readouterr().out


def test_parser_subcommands():
    parser = build_parser()

    args = parser.parse_args(["scan", "--url", "http://hub:8090/"])
    assert args.command == "scan"
    assert args.url == "http://hub:8090/"

    args = parser.parse_args(["run", "-v"])
    assert args.verbose is True
    assert args.config is None


# ============================================================================
# Logging
# ============================================================================

def test_json_formatter_includes_service_and_extra():
    record = logging.LogRecord(
        name="tailhub.device",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Device %s online",
        args=("AA",),
        exc_info=None,
    )
    record.service = "device"
    record.device = "AA"

    data = json.loads(JsonFormatter().format(record))

    assert data["message"] == "Device AA online"
    assert data["service"] == "device"
    assert data["level"] == "INFO"
    assert data["device"] == "AA"


def test_set_log_level_updates_existing_loggers(monkeypatch):
    monkeypatch.setenv("TAILHUB_LOG_LEVEL", "INFO")
    adapter = get_service_logger("test.levels")

    set_log_level("debug")

    assert adapter.logger.level == logging.DEBUG
    assert adapter.isEnabledFor(logging.DEBUG)
