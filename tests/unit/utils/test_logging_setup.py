"""Unit tests for category logging."""

import json
import logging

import pytest

from src.utils.logging_setup import (
    CATEGORIES,
    LOGGER_PREFIX,
    _next_run_number,
    category_for,
    get_logger,
    setup_category_logging,
    shutdown_logging,
)
from src.utils.trace_context import new_cycle


@pytest.fixture
def restore_loggers():
    yield
    shutdown_logging()
    for category in CATEGORIES:
        logger = logging.getLogger(f"{LOGGER_PREFIX}.{category}")
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
        logger.propagate = True
        logger.setLevel(logging.NOTSET)


@pytest.mark.parametrize(
    "module, category",
    [
        ("src.domain.signals.rule_engine", "engine"),
        ("src.infrastructure.delivery.websocket_client", "delivery"),
        ("src.infrastructure.notifications.fanout", "delivery"),
        ("src.infrastructure.persistence.database", "data"),
        ("migrations.runner", "data"),
        ("src.infrastructure.observability.metrics", "perf"),
        ("src.application.http_api", "system"),
        ("__main__", "system"),
    ],
)
def test_module_routing(module, category) -> None:
    assert category_for(module) == category
    assert get_logger(module).name == f"signalpro.{category}"


def test_json_lines_carry_cycle_pair_and_extra(tmp_path, restore_loggers) -> None:
    files = setup_category_logging(env="test", log_dir=str(tmp_path), level="DEBUG", timezone="UTC")
    assert set(files) == set(CATEGORIES)

    logger = get_logger("src.domain.signals.pipeline")
    with new_cycle("abc123", pair="NIFTY50/5m"):
        logger.info("Signal committed", extra={"strategy": "golden"})
    get_logger("src.application.bootstrap").debug("outside any cycle")
    shutdown_logging()

    [engine_line] = files["engine"].read_text().splitlines()
    entry = json.loads(engine_line)
    assert entry["cat"] == "engine"
    assert entry["cycle"] == "abc123"
    assert entry["pair"] == "NIFTY50/5m"
    assert entry["msg"] == "Signal committed"
    assert entry["data"] == {"strategy": "golden"}
    assert entry["ts"].endswith("+00:00")

    system_entry = json.loads(files["system"].read_text().splitlines()[0])
    assert system_entry["cycle"] == "------"
    assert "pair" not in system_entry


def test_level_filters(tmp_path, restore_loggers) -> None:
    files = setup_category_logging(env="test", log_dir=str(tmp_path), level="WARNING")
    logger = get_logger("src.infrastructure.delivery.websocket_server")
    logger.info("dropped")
    logger.warning("kept")
    shutdown_logging()

    lines = files["delivery"].read_text().splitlines()
    assert [json.loads(line)["msg"] for line in lines] == ["kept"]


def test_next_run_number(tmp_path) -> None:
    day = tmp_path / "2024-01-15"
    assert _next_run_number(day, "dev", "2024-01-15") == 1

    day.mkdir()
    (day / "signalpro_dev_eng_2024-01-15_1.log").touch()
    (day / "signalpro_dev_sys_2024-01-15_4.log").touch()
    (day / "signalpro_prod_sys_2024-01-15_9.log").touch()
    (day / "notes.txt").touch()
    assert _next_run_number(day, "dev", "2024-01-15") == 5
