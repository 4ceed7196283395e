"""Estimate API routes: chat, form, status and submission for one request."""

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from app.dependencies import create_session, evict_session, get_session, rekey_session
from app.models.estimate import (
    CreateEstimateRequest,
    FreeTextRequest,
    GuidedAnswerRequest,
    InputModeRequest,
    RevertRequest,
)
from intake.form_binding import EstimateForm
from intake.request_store import list_requests

router = APIRouter()


@router.post("")
async def create_estimate(body: CreateEstimateRequest | None = None):
    """Start a new request and return its initial state."""
    session = create_session(platform=body.platform if body else None)
    return JSONResponse(status_code=201, content=session.snapshot())


@router.get("")
async def list_estimates():
    """List stored requests."""
    return JSONResponse(content={"requests": list_requests()})


@router.get("/{request_id}")
async def get_estimate(request_id: str):
    return JSONResponse(content=get_session(request_id).snapshot())


@router.get("/{request_id}/chat")
async def get_chat(request_id: str):
    """Return the chat history and conversation state."""
    return JSONResponse(content=get_session(request_id).chat.snapshot())


@router.post("/{request_id}/chat/answer")
async def answer_step(request_id: str, body: GuidedAnswerRequest):
    """Answer a guided or recovery question."""
    session = get_session(request_id)
    session.chat.handle_guided_answer(body.step_id, body.value, body.display_text)
    return JSONResponse(content=session.snapshot())


@router.post("/{request_id}/chat/message")
async def send_message(request_id: str, body: FreeTextRequest):
    """Send a free-text chat message."""
    session = get_session(request_id)
    if session.chat.is_loading:
        raise HTTPException(status_code=409, detail="A previous message is still being processed")
    await session.chat.handle_free_text_input(body.text)
    return JSONResponse(content=session.snapshot())


@router.post("/{request_id}/chat/revert")
async def revert_step(request_id: str, body: RevertRequest):
    """Rewind the conversation to re-answer an earlier step."""
    session = get_session(request_id)
    session.chat.revert_to_step(body.step_id)
    return JSONResponse(content=session.snapshot())


@router.put("/{request_id}/chat/mode")
async def set_input_mode(request_id: str, body: InputModeRequest):
    session = get_session(request_id)
    session.chat.set_input_mode(body.mode)
    return JSONResponse(content=session.chat.snapshot())


@router.get("/{request_id}/form")
async def get_form(request_id: str):
    return JSONResponse(content=get_session(request_id).form_sync.form.model_dump())


@router.put("/{request_id}/form")
async def update_form(request_id: str, body: EstimateForm):
    """Apply a manual form edit."""
    session = get_session(request_id)
    session.form_sync.submit_form_edit(body)
    return JSONResponse(content=session.snapshot())


@router.get("/{request_id}/status")
async def get_status(request_id: str):
    return JSONResponse(content=get_session(request_id).status())


@router.post("/{request_id}/draft")
async def save_draft(request_id: str):
    """Persist the request without submitting it."""
    session = get_session(request_id)
    saved = session.save_draft()
    return JSONResponse(content={"saved": saved, "requestId": session.request_id})


@router.post("/{request_id}/submit")
async def submit_estimate(request_id: str):
    """Submit the request; 409 while required fields are missing."""
    session = get_session(request_id)
    result = session.submit()
    if not result["submitted"] and result["missing"]:
        return JSONResponse(status_code=409, content=result)
    if result["submitted"]:
        evict_session(request_id)
    return JSONResponse(content=result)


@router.post("/{request_id}/new")
async def start_new_request(request_id: str):
    """Replace this session's request with a fresh one."""
    session = get_session(request_id)
    session.start_new_request()
    rekey_session(request_id, session)
    return JSONResponse(status_code=201, content=session.snapshot())
