import logging
from unittest.mock import MagicMock, patch

import pytest
from loguru import logger
from omegaconf import OmegaConf

from dino_retrieval.utils import logging as logging_utils


@pytest.mark.parametrize(
    "level_input, expected_output",
    [
        ("INFO", logging.INFO),
        ("WaRnInG", logging.WARNING),
        ("success", 25),
        ("trace", 5),
        (logging.ERROR, logging.ERROR),
    ],
)
def test_stdlib_level_accepts_loguru_names(level_input, expected_output):
    assert logging_utils._stdlib_level(level_input, "dino_test_module") == expected_output


@pytest.mark.parametrize("invalid_level", ["NOT_A_LEVEL", None, object(), True])
def test_stdlib_level_rejects_unknown_levels(invalid_level):
    with pytest.raises(ValueError, match="Invalid log level"):
        logging_utils._stdlib_level(invalid_level, "dino_test_module")


@patch("dino_retrieval.utils.logging.logger")
def test_setup_logger_builds_session_tagged_sinks(mock_loguru_logger: MagicMock):
    mock_loguru_logger.add.side_effect = [11, 12]
    logging_cfg = OmegaConf.create(
        {
            "handlers": [
                {"sink": "stderr", "level": "INFO"},
                {"sink": "rich", "level": "DEBUG", "format": "{message}", "show_time": False},
            ],
            "module_levels": {},
        }
    )

    sink_ids = logging_utils.setup_logger(logging_cfg)

    assert sink_ids == [11, 12]
    mock_loguru_logger.remove.assert_called_once_with()
    mock_loguru_logger.configure.assert_called_once_with(
        extra={"session": logging_utils.NO_SESSION}
    )
    first, second = mock_loguru_logger.add.call_args_list
    assert first.args == (logging_utils.sys.stderr,)
    assert first.kwargs == {"level": "INFO", "format": logging_utils.SESSION_FORMAT}
    assert isinstance(second.args[0], logging_utils.RichHandler)
    assert second.kwargs == {"level": "DEBUG", "format": "{message}"}


def test_setup_logger_forwards_only_configured_modules():
    logging_cfg = OmegaConf.create(
        {"handlers": [], "module_levels": {"dino_test_forwarded": "DEBUG"}}
    )

    logging_utils.setup_logger(logging_cfg)

    forwarded = logging.getLogger("dino_test_forwarded")
    assert forwarded.level == logging.DEBUG
    assert not forwarded.propagate
    assert [type(handler) for handler in forwarded.handlers] == [logging_utils._ForwardHandler]
    assert not any(
        isinstance(handler, logging_utils._ForwardHandler)
        for handler in logging.getLogger().handlers
    )


def test_setup_logger_quiets_http_clients_by_default():
    logging_utils.setup_logger(OmegaConf.create({"handlers": []}))

    for module_name in ("httpx", "httpcore", "gradio_client"):
        assert logging.getLogger(module_name).level == logging.WARNING


def test_setup_logger_requires_a_sink():
    with pytest.raises(TypeError, match="sink"):
        logging_utils.setup_logger(OmegaConf.create({"handlers": [{"level": "INFO"}]}))


def test_session_logger_and_forwarded_records_reach_loguru():
    logging_utils.setup_logger(
        OmegaConf.create({"handlers": [], "module_levels": {"dino_test_lib": "INFO"}})
    )
    records = []
    sink_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    try:
        logging_utils.session_logger("abc123").info("search accepted")
        logger.info("outside any session")
        logging.getLogger("dino_test_lib").warning("socket %s closed", 7)
        logging.getLogger("dino_test_lib").debug("below the forwarded level")
    finally:
        logger.remove(sink_id)

    assert [record["extra"]["session"] for record in records] == ["abc123", "-", "-"]
    assert records[2]["message"] == "dino_test_lib | socket 7 closed"
    assert records[2]["level"].name == "WARNING"
