"""Request bodies and the response envelope shared by the REST routers.

Bodies are camelCase on the wire; snake_case field names are accepted too.
Successful responses are wrapped as {success, data, message}; failures are
rendered by the handlers in consenthub.main.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def envelope(data: Any = None, message: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


# ------------------------------------------------------------------ #
# DSAR
# ------------------------------------------------------------------ #


class DSARCreateRequest(CamelModel):
    requester_name: str = Field(..., min_length=1, max_length=255)
    requester_email: EmailStr
    request_type: str = Field(..., description="Canonical type or a frontend alias (export, delete, ...)")
    requester_phone: str | None = None
    priority: str = "medium"
    subject: str | None = Field(None, max_length=500)
    description: str | None = None
    source: str = "web_form"


class DSARStatusUpdate(CamelModel):
    status: str
    reason: str | None = None
    result: dict[str, Any] | None = None
    expected_version: int | None = None


class DSARNoteRequest(CamelModel):
    note: str = Field(..., min_length=1, max_length=4000)


# ------------------------------------------------------------------ #
# Consents
# ------------------------------------------------------------------ #


class ConsentFields(CamelModel):
    purpose: str = Field(..., min_length=1, max_length=255)
    status: str = "granted"
    channel: str = "all"
    consent_type: str = "marketing"
    privacy_notice_id: str | None = None
    version_accepted: str = "1.0"
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    metadata: dict[str, Any] | None = None


class ConsentCreateRequest(ConsentFields):
    party_id: str | None = Field(None, description="Defaults to the caller's own id")


class ConsentStatusUpdate(CamelModel):
    status: str
    expected_version: int | None = None


class GuardianConsentRequest(CamelModel):
    guardian_id: str | None = Field(None, description="Defaults to the caller")
    minor_id: str
    consents: list[ConsentFields] = Field(..., min_length=1)


# ------------------------------------------------------------------ #
# Privacy notices
# ------------------------------------------------------------------ #


class NoticeCreateRequest(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1)
    version: str = "1.0"
    category: str = "general"
    description: str | None = None
    content_type: str = "text/markdown"
    purposes: list[str] = Field(default_factory=list)
    legal_basis: str | None = None
    language: str = "en"
    effective_date: datetime | None = None


class NoticeVersionRequest(CamelModel):
    major: bool = False
    title: str | None = None
    description: str | None = None
    content: str | None = None
    content_type: str | None = None
    category: str | None = None
    purposes: list[str] | None = None
    legal_basis: str | None = None
    language: str | None = None
    effective_date: datetime | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude={"major"}, exclude_none=True)


# ------------------------------------------------------------------ #
# Preferences
# ------------------------------------------------------------------ #


class CategoryCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    enabled: bool = True
    priority: int = 0


class CategoryUpdateRequest(CamelModel):
    name: str | None = None
    description: str | None = None
    enabled: bool | None = None
    priority: int | None = None


class ItemCreateRequest(CamelModel):
    key: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    type: str = "boolean"
    description: str | None = None
    default_value: Any = None
    options: list[Any] | None = None
    enabled: bool = True


class ItemUpdateRequest(CamelModel):
    key: str | None = None
    name: str | None = None
    type: str | None = None
    description: str | None = None
    default_value: Any = None
    options: list[Any] | None = None
    enabled: bool | None = None

    def changes(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        if "type" in data:
            data["value_type"] = data.pop("type")
        return data


class PreferenceValuesRequest(CamelModel):
    preferences: dict[str, Any] = Field(..., description="itemId -> value")


# ------------------------------------------------------------------ #
# TMF
# ------------------------------------------------------------------ #


class ValidFor(CamelModel):
    start_date_time: datetime | None = None
    end_date_time: datetime | None = None


class TMFPrivacyConsentCreate(CamelModel):
    party_id: str
    purpose: str
    status: str = "granted"
    channel: str = "all"
    privacy_notice_id: str | None = None
    version_accepted: str = "1.0"
    valid_for: ValidFor | None = None


class TMFHubRegistration(CamelModel):
    callback: str
    query: str | None = None
