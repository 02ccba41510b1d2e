"""Codec for Task Master tasks.json files.

Three on-disk shapes are accepted and normalized into a TaskCollection:

1. Bare array of tasks -> tag "master"
2. Single object ``{"tasks": [...]}`` -> tag "master"
3. Tagged object ``{"<tag>": {"tasks": [...], "metadata": {...}}, ...}``

Collections are always written back in the tagged shape with a two-space indent.
"""

import json
from pathlib import Path
from typing import Any

from ...core.errors import NotFoundError, ReadError
from ...core.logging import get_logger
from .records import DEFAULT_TAG, TaskCollection, TaskRecord

logger = get_logger(__name__)


def _is_tag_block(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("tasks"), list)


def _parse_tasks(raw_tasks: list[Any], tag: str, source: str) -> list[TaskRecord]:
    """Parse one tag's task list. Duplicate ids: last occurrence wins, at its position."""
    records: dict[str, TaskRecord] = {}
    for index, raw in enumerate(raw_tasks):
        if not isinstance(raw, dict) or raw.get("id") is None:
            raise ReadError(f"Invalid task at {source or 'tasks'}[{tag}][{index}]: missing id")
        record = TaskRecord.from_dict(raw, tag=tag)
        if record.key in records:
            logger.warning(
                "Duplicate task id, keeping last occurrence",
                extra={"tag": tag, "task_id": record.key, "source": source},
            )
            del records[record.key]
        records[record.key] = record
    return list(records.values())


def normalize(data: Any, source: str = "") -> TaskCollection:
    """Turn decoded JSON of any supported shape into a TaskCollection.

    Raises:
        ReadError: data matches none of the known shapes
    """
    collection = TaskCollection()

    if isinstance(data, list):
        collection.tags[DEFAULT_TAG] = _parse_tasks(data, DEFAULT_TAG, source)
        return collection

    if not isinstance(data, dict):
        raise ReadError(f"Unrecognized tasks file shape in {source or 'payload'}")

    if isinstance(data.get("tasks"), list):
        collection.tags[DEFAULT_TAG] = _parse_tasks(data["tasks"], DEFAULT_TAG, source)
        collection.metadata[DEFAULT_TAG] = {k: v for k, v in data.items() if k != "tasks"}
        return collection

    for key, value in data.items():
        if _is_tag_block(value):
            collection.tags[key] = _parse_tasks(value["tasks"], key, source)
            collection.metadata[key] = {k: v for k, v in value.items() if k != "tasks"}
        else:
            collection.extra[key] = value

    if data and not collection.tags:
        raise ReadError(f"Unrecognized tasks file shape in {source or 'payload'}")

    return collection


def loads(content: str | bytes, source: str = "") -> TaskCollection:
    """Decode tasks file content.

    Raises:
        ReadError: not UTF-8, not JSON, or not a known shape
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ReadError(f"Tasks file is not valid UTF-8: {source or 'payload'}") from e

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ReadError(
            f"Malformed JSON in {source or 'tasks payload'}: line {e.lineno}, column {e.colno}"
        ) from e

    return normalize(data, source)


def dumps(collection: TaskCollection) -> str:
    """Encode a collection in canonical tagged form."""
    return json.dumps(collection.to_dict(), indent=2, ensure_ascii=False) + "\n"


def read_tasks_file(path: str | Path) -> TaskCollection:
    """Read and normalize a tasks file from the local disk.

    Raises:
        NotFoundError: the file does not exist
        ReadError: the file exists but cannot be read or parsed
    """
    path = Path(path)
    if not path.is_file():
        raise NotFoundError(f"Tasks file not found: {path}")
    try:
        content = path.read_bytes()
    except OSError as e:
        raise ReadError(f"Cannot read tasks file {path}: {e.strerror or e}") from e
    return loads(content, source=str(path))
