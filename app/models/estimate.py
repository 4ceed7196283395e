"""Pydantic request bodies for the estimate endpoints."""

from typing import Any

from pydantic import BaseModel, Field


class CreateEstimateRequest(BaseModel):
    platform: str | None = Field(default=None, pattern="^(mobile|desktop)$")


class GuidedAnswerRequest(BaseModel):
    step_id: str = Field(..., min_length=1)
    value: Any = None
    display_text: str | None = None


class FreeTextRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=2000)


class RevertRequest(BaseModel):
    step_id: str = Field(..., min_length=1)


class InputModeRequest(BaseModel):
    mode: str
