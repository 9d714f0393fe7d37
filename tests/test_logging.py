import logging
from pathlib import Path

from brickkit.logging_utils import ContextLogger, setup_operational_logger


def test_child_logger_merges_context_and_drops_none():
    base = ContextLogger(logging.getLogger("test.context_logger"), {"mod_component_id": "c1"})
    child = base.child_logger(brick_id="brickkit/identity", label=None)

    assert child.context == {"mod_component_id": "c1", "brick_id": "brickkit/identity"}
    assert base.context == {"mod_component_id": "c1"}


def test_context_is_attached_to_records(caplog):
    step_logger = ContextLogger(logging.getLogger("test.context_records"), {"brick_id": "brickkit/log"})

    with caplog.at_level(logging.INFO, logger="test.context_records"):
        step_logger.info("Progress 50%% for %s", "job")

    record = caplog.records[-1]
    assert record.brickkit_context == {"brick_id": "brickkit/log"}
    assert record.getMessage() == "Progress 50% for job (brick_id=brickkit/log)"


def test_setup_operational_logger_writes_utf8_file(tmp_path: Path):
    logger, log_file = setup_operational_logger(
        "test.operational", level=logging.WARNING, log_dir=str(tmp_path), run_id="run-1"
    )
    try:
        logger.debug("arrow → and accents é")
        for handler in logger.handlers:
            handler.flush()

        assert log_file == str(tmp_path / "run-1_oplog.log")
        content = Path(log_file).read_text(encoding="utf-8")
        assert "arrow → and accents é" in content
        assert " | DEBUG | " in content
    finally:
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
