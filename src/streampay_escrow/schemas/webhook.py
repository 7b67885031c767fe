"""Pydantic schemas for inbound task events and their outcomes."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from streampay_escrow.domain.enums import Platform
from streampay_escrow.domain.events import CanonicalEvent


class CanonicalEventRequest(BaseModel):
    """A task-completion event already normalized by an upstream adapter."""

    platform: Platform
    external_id: str = Field(..., min_length=1, examples=["acme/payments-api"])
    task_id: str = Field(..., min_length=1, examples=["42"])
    task_title: str = Field(default="", examples=["feat/backend: auth layer"])
    task_labels: list[str] = Field(default_factory=list, examples=[["backend"]])
    task_url: str = Field(default="", examples=["https://github.com/acme/payments-api/issues/42"])
    is_done: bool = True
    raw_payload: dict[str, Any] | None = None

    def to_event(self) -> CanonicalEvent:
        return CanonicalEvent(
            platform=self.platform,
            external_id=self.external_id,
            task_id=self.task_id,
            task_title=self.task_title,
            task_labels=tuple(self.task_labels),
            task_url=self.task_url,
            is_done=self.is_done,
            raw_payload=self.raw_payload,
        )


class WebhookAck(BaseModel):
    """Immediate acknowledgement; processing continues in the background."""

    received: bool = True
    queued: bool = True
    event: str | None = None


class OutcomeResponse(BaseModel):
    """Outcome of processing an event inline (``?wait=true``)."""

    kind: str
    detail: str
    escrow_id: str | None = None
    milestone_index: int | None = None
    tx_hash: str | None = None
    error_code: str | None = None
    retryable: bool = False
