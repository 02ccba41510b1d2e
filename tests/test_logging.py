"""
Тесты форматтеров логов.

Проверяем, что request_id / sync_id из контекста и поля extra попадают в вывод.
"""

import json
import logging

from tasksync.core.logging import JSONFormatter, SimpleFormatter, request_id_var, sync_id_var


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("tasksync.test", logging.INFO, __file__, 1, "Merge completed", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_extra_and_context(self):
        request_token = request_id_var.set("req-1")
        sync_token = sync_id_var.set("42")
        try:
            line = JSONFormatter().format(make_record(project_id=7, added=2))
        finally:
            request_id_var.reset(request_token)
            sync_id_var.reset(sync_token)

        payload = json.loads(line)
        assert payload["message"] == "Merge completed"
        assert payload["level"] == "INFO"
        assert payload["request_id"] == "req-1"
        assert payload["sync_id"] == "42"
        assert payload["extra"] == {"project_id": 7, "added": 2}

    def test_no_context_no_extra(self):
        payload = json.loads(JSONFormatter().format(make_record()))

        assert "request_id" not in payload
        assert "sync_id" not in payload
        assert "extra" not in payload


class TestSimpleFormatter:
    def test_sync_id_and_extra_rendered(self):
        token = sync_id_var.set("9")
        try:
            line = SimpleFormatter().format(make_record(project_id=3))
        finally:
            sync_id_var.reset(token)

        assert "(sync 9)" in line
        assert "tasksync.test: Merge completed" in line
        assert line.endswith("project_id=3")
