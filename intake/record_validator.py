"""Schema validation for persisted moving-request records.

Validates records against the JSON Schema in
``config/schemas/moving_request.schema.json``. All validation is
deterministic.
"""

import json
from functools import lru_cache
from pathlib import Path

from jsonschema import Draft202012Validator, ValidationError

from config.settings import MOVING_REQUEST_SCHEMA


def load_schema(schema_path: str | Path) -> dict:
    """Load a JSON Schema file.

    Raises:
        FileNotFoundError: If the schema file does not exist.
    """
    with open(Path(schema_path), "r", encoding="utf-8") as f:
        return json.load(f)


@lru_cache(maxsize=None)
def _validator(schema_path: str) -> Draft202012Validator:
    return Draft202012Validator(load_schema(schema_path))


def validate_moving_request(record: dict) -> bool:
    """Validate a record against the moving-request schema.

    Returns:
        True if valid.

    Raises:
        ValidationError: If validation fails (first error only).
    """
    _validator(str(MOVING_REQUEST_SCHEMA)).validate(record)
    return True


def get_record_validation_errors(record: dict) -> list[str]:
    """Return all validation errors as ``path: message`` strings (empty if valid)."""
    validator = _validator(str(MOVING_REQUEST_SCHEMA))
    errors = sorted(validator.iter_errors(record), key=lambda e: [str(p) for p in e.path])
    return [
        f"{'.'.join(str(p) for p in error.absolute_path) or 'root'}: {error.message}"
        for error in errors
    ]


def is_valid_moving_request(record: dict) -> bool:
    """Check validity without raising."""
    try:
        validate_moving_request(record)
        return True
    except ValidationError:
        return False
