"""File-backed persistence for moving-request records.

One JSON file per request at ``OUTPUT_DIR/<request_id>/moving_request.json``,
written atomically (temp file in the same directory, then rename). Status is
recomputed before every write and after every read; a persisted status is
never trusted.
"""

import json
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path

from config.settings import OUTPUT_DIR
from intake.flow_engine import with_status
from intake.moving_schema import backfill_defaults
from intake.record_validator import get_record_validation_errors

logger = logging.getLogger(__name__)

RECORD_FILENAME = "moving_request.json"

_REQUEST_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def _check_request_id(request_id: str) -> str:
    if not isinstance(request_id, str) or not _REQUEST_ID.match(request_id):
        raise ValueError(f"Invalid request id: {request_id!r}")
    return request_id


def _request_path(request_id: str) -> Path:
    """Return the path to a request's record file."""
    return OUTPUT_DIR / _check_request_id(request_id) / RECORD_FILENAME


def request_exists(request_id: str) -> bool:
    try:
        return _request_path(request_id).exists()
    except ValueError:
        return False


def _write_atomic(path: Path, record: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp", prefix="request_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, str(path))
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def save_request(record: dict, request_id: str | None = None) -> str:
    """Persist a record.

    Args:
        record: The moving-request record.
        request_id: Omit to create a new entry keyed by
            ``meta.requestId``; pass an id to update an existing entry.

    Returns:
        The request id the record was stored under.

    Raises:
        ValueError: If the id is malformed or does not match the record.
        FileExistsError: On create, if the id is already stored.
        FileNotFoundError: On update, if the id is not stored.
    """
    record_id = record["meta"]["requestId"]
    if request_id is None:
        path = _request_path(record_id)
        if path.exists():
            raise FileExistsError(f"Request '{record_id}' already exists")
    else:
        if request_id != record_id:
            raise ValueError(f"Record id '{record_id}' does not match '{request_id}'")
        path = _request_path(request_id)
        if not path.exists():
            raise FileNotFoundError(f"Request '{request_id}' not found")

    _write_atomic(path, with_status(record))
    return record_id


def load_request(request_id: str) -> dict:
    """Load a record, backfilling missing keys and recomputing status.

    Raises:
        ValueError: If the id is malformed.
        FileNotFoundError: If the request is not stored.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    path = _request_path(request_id)
    with open(path, "r", encoding="utf-8") as f:
        record = json.load(f)

    errors = get_record_validation_errors(record)
    if errors:
        logger.warning(
            "Stored request %s does not match the schema (%d errors, first: %s). Backfilling defaults.",
            request_id, len(errors), errors[0],
        )
    return with_status(backfill_defaults(record))


def delete_request(request_id: str) -> None:
    """Delete a stored request and its directory.

    Raises:
        FileNotFoundError: If the request is not stored.
    """
    path = _request_path(request_id)
    if not path.exists():
        raise FileNotFoundError(f"Request '{request_id}' not found")
    shutil.rmtree(path.parent)


def list_requests() -> list[dict]:
    """Return summary rows for every stored request, oldest id first."""
    rows = []
    if not OUTPUT_DIR.exists():
        return rows
    for request_dir in sorted(OUTPUT_DIR.iterdir()):
        if not request_dir.is_dir() or not (request_dir / RECORD_FILENAME).exists():
            continue
        try:
            record = load_request(request_dir.name)
        except (OSError, ValueError) as e:
            logger.warning("Skipping unreadable request %s: %s", request_dir.name, e)
            continue
        rows.append({
            "requestId": record["meta"]["requestId"],
            "completionRate": record["status"]["completionRate"],
            "readyForSubmit": record["status"]["readyForSubmit"],
            "submittedAt": record["status"]["submittedAt"],
            "updatedAt": record["meta"]["updatedAt"],
        })
    return rows
