"""
Unit tests for the JSON log formatter and root logger setup
"""

import json
import logging
import sys

import pytest

from photomap.common.logging_setup import JsonFormatter, StdStreamHandler, setup_logging


@pytest.fixture
def root():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    root.handlers = [h for h in root.handlers if not isinstance(h, StdStreamHandler)]
    yield root
    root.handlers = saved_handlers
    root.setLevel(saved_level)


def _record(msg="stored %s", args=("a",), **kw):
    rec = logging.LogRecord("photomap.test", logging.INFO, __file__, 1, msg, args, kw.pop("exc_info", None))
    rec.created = 0.0
    for k, v in kw.items():
        setattr(rec, k, v)
    return rec


class TestJsonFormatter:
    def test_fixed_keys_and_lifted_fields(self):
        rec = _record(extra={"id": "a", "backend": "local", "msg": "clobbered?"})
        out = json.loads(JsonFormatter("photomap-server").format(rec))
        assert out == {
            "ts": "1970-01-01T00:00:00.000Z",
            "level": "INFO",
            "svc": "photomap-server",
            "logger": "photomap.test",
            "msg": "stored a",
            "id": "a",
            "backend": "local",
        }

    def test_exception_and_unserializable_values(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            exc_info = sys.exc_info()
        rec = _record(exc_info=exc_info, extra={"path": object()})
        out = json.loads(JsonFormatter().format(rec))
        assert out["svc"] == "photomap"
        assert "RuntimeError: boom" in out["exc_info"]
        assert out["path"].startswith("<object")


class TestSetupLogging:
    def test_first_call_installs_single_handler(self, root, monkeypatch, capsys):
        monkeypatch.setenv("LOG_LEVEL", "warning")
        setup_logging(service="photomap-server")
        setup_logging()
        ours = [h for h in root.handlers if isinstance(h, StdStreamHandler)]
        assert len(ours) == 1
        assert root.level == logging.WARNING

        logging.getLogger("photomap.x").warning("disk low", extra={"extra": {"free": 3}})
        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert line["svc"] == "photomap-server"
        assert line["msg"] == "disk low" and line["free"] == 3

    def test_later_call_moves_stream_and_keeps_service(self, root, capsys):
        setup_logging("INFO", service="photomap-client")
        setup_logging("DEBUG", stream="stderr")
        logging.getLogger("photomap.y").debug("hello")
        captured = capsys.readouterr()
        assert captured.out == ""
        line = json.loads(captured.err.strip().splitlines()[-1])
        assert line["svc"] == "photomap-client" and line["level"] == "DEBUG"
        assert len([h for h in root.handlers if isinstance(h, StdStreamHandler)]) == 1

    def test_unknown_level_falls_back_to_info(self, root):
        setup_logging("chatty")
        assert root.level == logging.INFO
        setup_logging("10")
        assert root.level == logging.DEBUG

    def test_bad_stream_name(self):
        with pytest.raises(ValueError):
            StdStreamHandler("stdin")
