"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class AddParticipantRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to: str | None = Field(default=None, description="E.164 phone number to dial, e.g. +1415...")
    conference_sid: str | None = Field(default=None, alias="conferenceSid")
    conference_name: str | None = Field(default=None, alias="conferenceName")


class AddParticipantResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    call_sid: str = Field(serialization_alias="callSid")
    conference_name: str = Field(serialization_alias="conferenceName")
