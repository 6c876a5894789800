from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AcceptanceCriterionInput(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    text: Any = None
    completed: bool | None = None
    is_completed: bool | None = Field(default=None, alias="isCompleted")


class AttachmentInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str | None = None
    type: str | None = None
    name: str | None = None


class TicketImproveInput(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    title: str = Field(..., min_length=1, max_length=500)
    # Raw markup, a {"content": ...} document, or that document as a JSON string.
    description: Any = None
    acceptance_criteria: list[AcceptanceCriterionInput] = Field(default_factory=list, alias="acceptanceCriteria")
    attachments: list[AttachmentInput] = Field(default_factory=list)
    ticket_type: str | None = Field(default=None, alias="ticketType", max_length=40)
    user_command: str | None = Field(default=None, alias="userCommand", max_length=2000)


class AcceptanceCriterion(BaseModel):
    text: str
    completed: bool = False


class TicketImproveResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    description: str
    acceptance_criteria: list[AcceptanceCriterion] = Field(default_factory=list, alias="acceptanceCriteria")
