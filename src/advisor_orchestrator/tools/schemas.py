"""Pydantic contracts for the email, calendar, and CRM tool adapters."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class FindContactInput(StrictModel):
    name: str = Field(min_length=1)
    context_hint: str = ""


class ContactEmail(BaseModel):
    email: str
    name: str | None = None
    source: str = "gmail"


class FindContactOutput(BaseModel):
    emails_found: list[ContactEmail] = Field(default_factory=list)


class SendEmailInput(StrictModel):
    to: list[str] = Field(min_length=1)
    subject: str
    body: str
    cc: list[str] = Field(default_factory=list)


class SendEmailOutput(BaseModel):
    message_id: str
    thread_id: str | None = None
    to: list[str]
    subject: str


class CreateEventInput(StrictModel):
    title: str
    start_time: str
    end_time: str
    attendees: list[str] = Field(default_factory=list)
    description: str = ""


class CreateEventOutput(BaseModel):
    event_id: str
    html_link: str | None = None
    start_time: str
    end_time: str
    attendees: list[str] = Field(default_factory=list)


class UpsertContactInput(StrictModel):
    email: str = Field(min_length=3)
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    phone: str | None = None


class UpsertContactOutput(BaseModel):
    contact_id: str
    created: bool
    email: str
