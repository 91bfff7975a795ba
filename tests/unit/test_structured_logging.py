import json
import logging
from pathlib import Path

from ekiden.utils.structured_logging import (
    ContextFormatter,
    JSONFormatter,
    bind_logger,
    setup_structured_logging,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("ekiden.worker", logging.INFO, __file__, 1, "hello %s", ("vm",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields() -> None:
    entry = json.loads(JSONFormatter().format(_record(slot=2, instance="runner_r_2", _private=1)))

    assert entry["message"] == "hello vm"
    assert entry["level"] == "INFO"
    assert entry["component"] == "ekiden.worker"
    assert entry["slot"] == 2
    assert entry["instance"] == "runner_r_2"
    assert "_private" not in entry
    assert entry["timestamp"].endswith("Z")


def test_json_formatter_stringifies_unserializable_values() -> None:
    entry = json.loads(JSONFormatter().format(_record(path=Path("/tmp/x"))))
    assert entry["path"] == "/tmp/x"


def test_context_formatter_appends_slot_and_instance() -> None:
    text = ContextFormatter("%(message)s").format(_record(slot=1, instance="runner_r_1"))
    assert text == "hello vm [slot=1 instance=runner_r_1]"
    assert ContextFormatter("%(message)s").format(_record()) == "hello vm"


def test_bind_logger_merges_call_site_extra(caplog) -> None:
    log = bind_logger(logging.getLogger("ekiden.test"), slot=3).bind(instance="runner_r_3")

    with caplog.at_level(logging.INFO, logger="ekiden.test"):
        log.info("configured", extra={"ip": "10.0.0.1"})

    record = caplog.records[-1]
    assert record.slot == 3
    assert record.instance == "runner_r_3"
    assert record.ip == "10.0.0.1"


def test_setup_writes_jsonl_file(tmp_path: Path) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    log_file = tmp_path / "logs" / "runner.log"
    try:
        setup_structured_logging(log_file, quiet=True, max_bytes=1024, backup_count=1)
        logging.getLogger("ekiden.test").debug("debug goes to file", extra={"slot": 0})
        for handler in root.handlers:
            handler.flush()

        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[-1])["message"] == "debug goes to file"
        assert logging.getLogger("aiohttp").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
