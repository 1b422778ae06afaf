"""Tests for JSONL logging bootstrap."""

import json
import logging

import pytest
from prompt_modules.logging_setup import JsonlHandler
from prompt_modules.logging_setup import init_json_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_writes_jsonl_records(tmp_path, restore_root_logger):
    path = tmp_path / "logs" / "out.jsonl"
    init_json_logging(path, "debug")

    logging.getLogger("prompt_modules.test").info("Fetched %s", "thing", extra={"url": "https://x"})

    record = json.loads(path.read_text().strip().splitlines()[-1])
    assert record["lvl"] == "INFO"
    assert record["logger"] == "prompt_modules.test"
    assert record["message"] == "Fetched thing"
    assert record["url"] == "https://x"
    assert restore_root_logger.level == logging.DEBUG


def test_reinitializing_replaces_handler(tmp_path, restore_root_logger):
    init_json_logging(tmp_path / "a.jsonl")
    init_json_logging(tmp_path / "b.jsonl")

    handlers = [h for h in restore_root_logger.handlers if isinstance(h, JsonlHandler)]
    assert len(handlers) == 1
    assert handlers[0].path == tmp_path / "b.jsonl"


def test_environment_defaults(tmp_path, monkeypatch, restore_root_logger):
    monkeypatch.setenv("PROMPT_MODULES_LOG_PATH", str(tmp_path / "env.jsonl"))
    monkeypatch.setenv("PROMPT_MODULES_LOG_LEVEL", "warning")

    handler = init_json_logging()

    assert handler.path == tmp_path / "env.jsonl"
    assert restore_root_logger.level == logging.WARNING
