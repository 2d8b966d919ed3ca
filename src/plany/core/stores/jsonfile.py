from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from plany.core.errors import StorageFailure

ModelT = TypeVar("ModelT", bound=BaseModel)

logger = logging.getLogger("plany.stores")


def read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        logger.warning("state_file_unreadable", extra={"extra_fields": {"path": str(path)}})
        return default


def write_json_atomic(path: Path, payload: Any) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)
    except OSError as exc:
        raise StorageFailure(f"Could not save {path.name}: {exc.strerror or exc}") from exc


def validate_records(raw: Any, model: type[ModelT]) -> list[ModelT]:
    if not isinstance(raw, list):
        return []
    records: list[ModelT] = []
    for item in raw:
        try:
            records.append(model.model_validate(item))
        except ValidationError:
            continue
    return records


def dump_records(records: list[BaseModel]) -> list[dict[str, Any]]:
    return [record.model_dump(mode="json") for record in records]
