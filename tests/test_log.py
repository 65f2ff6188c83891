from __future__ import annotations

import io
import logging

from staminaboot.log import ROOT_LOGGER_NAME, configure_logging, get_logger


def test_get_logger_nests_under_package_logger() -> None:
    assert get_logger("staminaboot.discovery").name == "staminaboot.discovery"
    assert get_logger("tests").name == "staminaboot.tests"
    assert get_logger(ROOT_LOGGER_NAME).name == ROOT_LOGGER_NAME


def test_configure_logging_format_and_level() -> None:
    stream = io.StringIO()
    logger = configure_logging(debug=False, stream=stream)

    get_logger("tests").debug("hidden")
    get_logger("tests").info("Using existing runtime")

    assert logger.level == logging.INFO
    assert stream.getvalue() == "[INFO ] Using existing runtime\n"


def test_configure_logging_replaces_previous_handler() -> None:
    first = io.StringIO()
    second = io.StringIO()
    configure_logging(debug=True, stream=first)
    logger = configure_logging(debug=True, stream=second)

    get_logger("tests").debug("Extracting runtime")

    assert first.getvalue() == ""
    assert second.getvalue() == "[DEBUG] Extracting runtime\n"
    assert sum(1 for handler in logger.handlers if getattr(handler, "_staminaboot", False)) == 1
