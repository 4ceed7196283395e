"""Dot-path helpers over the nested moving-request record.

All functions are pure: they never mutate their inputs and always hand back
a new top-level dict when something changes. Only the containers along the
written path are copied; untouched branches are shared with the input.
"""

import copy

_MISSING = object()


def split_path(path: str) -> list[str]:
    """Split a dot path into its segments, rejecting empty segments."""
    keys = path.split(".")
    if not path or any(not key for key in keys):
        raise ValueError(f"Invalid schema path: {path!r}")
    return keys


def get_by_path(record, path: str, default=None):
    """Return the value at ``path`` or ``default`` if any segment is absent.

    Never raises for missing keys or non-dict intermediates.

    Args:
        record: The nested record (any value is accepted).
        path: Dot-separated path such as ``"departure.floor"``.
        default: Value returned when the path cannot be resolved.

    Returns:
        The nested value, or ``default``.
    """
    current = record
    for key in path.split("."):
        if not isinstance(current, dict):
            return default
        current = current.get(key, _MISSING)
        if current is _MISSING:
            return default
    return current


def set_by_path(record: dict, path: str, value) -> dict:
    """Return a new record with ``value`` written at ``path``.

    Intermediate containers are freshly copied (or created when absent or
    not a dict); the input record is left untouched.

    Args:
        record: The nested record.
        path: Dot-separated target path.
        value: The value to store. Mutable values are deep-copied so the
            caller cannot alias the stored value.

    Returns:
        The updated copy of the record.
    """
    keys = split_path(path)
    result = dict(record)
    current = result
    for key in keys[:-1]:
        child = current.get(key)
        child = dict(child) if isinstance(child, dict) else {}
        current[key] = child
        current = child
    current[keys[-1]] = copy.deepcopy(value)
    return result


def merge_section(base: dict, patch: dict | None) -> dict:
    """Shallow-merge each top-level section of ``patch`` into ``base``.

    Merging goes exactly one level deep: ``patch["move"]["schedule"]``
    replaces the whole schedule mapping rather than being merged into it.
    Non-dict section patches are ignored.

    Args:
        base: The record to merge into.
        patch: Mapping of section name to a partial section mapping.

    Returns:
        A new record with the patched sections replaced.
    """
    result = dict(base)
    for section, section_patch in (patch or {}).items():
        if not isinstance(section_patch, dict):
            continue
        current = result.get(section)
        merged = dict(current) if isinstance(current, dict) else {}
        merged.update(copy.deepcopy(section_patch))
        result[section] = merged
    return result

