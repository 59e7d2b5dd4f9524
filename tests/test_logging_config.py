import logging

import numpy as np

from feel.xrf import setup_logging
from feel.xrf.grid import Grid, load_map
from feel.xrf.sample import TrackedSample
from feel.xrf.shapes import Circle


def _close(logger):
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_setup_logging_does_not_stack_handlers():
    logger = setup_logging()
    setup_logging()
    try:
        assert logger.name == "feel.xrf"
        assert len(logger.handlers) == 1
        assert logger.level == logging.INFO
    finally:
        _close(logger)


def test_setup_logging_writes_file(tmp_path):
    log_file = tmp_path / "run.log"
    logger = setup_logging(level=logging.DEBUG, log_file=str(log_file))
    try:
        path = tmp_path / "map.txt"
        path.write_text("1;2\n3;4\n", encoding="utf-8")
        load_map(path)
        for handler in logger.handlers:
            handler.flush()
        text = log_file.read_text(encoding="utf-8")
        assert "feel.xrf.grid - INFO - Loaded map map.txt (2x2)" in text
    finally:
        _close(logger)


def test_mean_recompute_is_logged_at_debug(caplog):
    sample = TrackedSample(Circle(1, 1, 1))
    with caplog.at_level(logging.DEBUG, logger="feel.xrf"):
        sample.mean_count(Grid(np.ones((3, 3))))
    assert "Recomputed mean for circle v0" in caplog.text


def test_setup_logging_closes_previous_file_handler(tmp_path):
    logger = setup_logging(log_file=str(tmp_path / "first.log"))
    first = next(h for h in logger.handlers if isinstance(h, logging.FileHandler))
    setup_logging(log_file=str(tmp_path / "second.log"))
    try:
        assert first not in logger.handlers
        assert first.stream is None
        assert len(logger.handlers) == 2
    finally:
        _close(logger)
