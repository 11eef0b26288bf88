"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    ok: bool = True


class StartCallRequest(BaseModel):
    name: str = Field(min_length=1, description="Who is being called; used for logging only.")
    phone: str = Field(min_length=1, description="E.164 phone number, e.g. +1415...")


class StartCallResponse(BaseModel):
    ok: bool = True
    call_sid: str
