"""Argument shapes for each function tool exposed to the assistant.

Every model forbids unknown keys so a malformed call is rejected before it
reaches the store. Telegram ids arrive as numbers as often as strings, hence
the numeric coercion.
"""
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from support_bot.schemas.ticket import Attachment


class ToolArguments(BaseModel):
    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)


class RegisterUserArgs(ToolArguments):
    external_id: str = Field(
        validation_alias=AliasChoices("external_id", "telegram_id"),
        description="Stable chat identity of the sender (telegram_id).",
    )
    email: str | None = Field(default=None, description="Corporate email of the user.")
    name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("name", "telegram_name", "display_name"),
        description="Display name of the user.",
    )


class GetDepartmentsArgs(ToolArguments):
    pass


class OpenTicketArgs(ToolArguments):
    external_id: str = Field(
        validation_alias=AliasChoices("external_id", "telegram_id"),
        description="Chat identity of the ticket owner.",
    )
    department: str = Field(description="Department name, exactly as listed by getDepartments.")
    subject: str = Field(min_length=1, description="Short subject line.")
    description: str = Field(min_length=1, description="Full description of the request.")
    attachments: list[Attachment] = Field(default_factory=list)


class ListTicketsArgs(ToolArguments):
    external_id: str = Field(validation_alias=AliasChoices("external_id", "telegram_id"))


class TicketProtocolArgs(ToolArguments):
    protocol: str = Field(min_length=1, description="Ticket protocol, e.g. CAR123456789.")


class ReplyTicketArgs(TicketProtocolArgs):
    body: str = Field(min_length=1, description="Complement sent to the department.")
    attachments: list[Attachment] = Field(default_factory=list)


class TranscribeAudioArgs(ToolArguments):
    file_id: str
