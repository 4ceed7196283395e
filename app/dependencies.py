"""Shared dependencies for the FastAPI web layer.

Sessions live in an in-memory registry keyed by request id. A request that
is not in memory (e.g. after a restart, a submit or an eviction) is resumed
from the record store.
"""

import logging
from collections import OrderedDict

from fastapi import HTTPException

from config import settings
from intake.moving_schema import create_default_schema
from intake.session import EstimateSession

logger = logging.getLogger(__name__)

_sessions: OrderedDict = OrderedDict()


def _register(session: EstimateSession) -> None:
    _sessions[session.request_id] = session
    _sessions.move_to_end(session.request_id)
    while len(_sessions) > settings.MAX_SESSIONS:
        request_id, oldest = _sessions.popitem(last=False)
        # Saved so the request can still be resumed from the store.
        oldest.save_draft()
        logger.info("Evicted session %s from memory", request_id)


def create_session(platform: str | None = None) -> EstimateSession:
    """Start a new request session and register it."""
    session = EstimateSession(create_default_schema(platform=platform))
    session.start()
    _register(session)
    return session


def get_session(request_id: str) -> EstimateSession:
    """Return the session for a request, resuming it from the store, or raise 404."""
    session = _sessions.get(request_id)
    if session is not None:
        _sessions.move_to_end(request_id)
        return session
    try:
        session = EstimateSession.from_store(request_id)
    except (FileNotFoundError, ValueError):
        raise HTTPException(status_code=404, detail=f"Request '{request_id}' not found")
    session.start()
    _register(session)
    return session


def rekey_session(old_request_id: str, session: EstimateSession) -> None:
    """Re-register a session whose request id changed."""
    _sessions.pop(old_request_id, None)
    _register(session)


def evict_session(request_id: str) -> None:
    """Drop a session from memory; the stored record is untouched."""
    _sessions.pop(request_id, None)


def clear_sessions() -> None:
    """Forget every in-memory session."""
    _sessions.clear()
