"""Function tools the assistant may call, and the dispatcher that runs them.

A run that stops in `requires_action` waits for exactly one output per tool
call. `ToolDispatcher.dispatch` therefore never raises and never skips a call:
unknown names, unparsable arguments and failing operations all come back as
JSON error envelopes in the slot of the call that caused them.
"""
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import ValidationError

from support_bot.errors import SupportBotError
from support_bot.logging_config import get_logger
from support_bot.schemas.ticket import TicketStatus
from support_bot.schemas.tool_arguments import (
    GetDepartmentsArgs,
    ListTicketsArgs,
    OpenTicketArgs,
    RegisterUserArgs,
    ReplyTicketArgs,
    TicketProtocolArgs,
    ToolArguments,
    TranscribeAudioArgs,
)

logger = get_logger(__name__)


class ToolKind(str, Enum):
    REGISTER_USER = "registerUser"
    GET_DEPARTMENTS = "getDepartments"
    OPEN_TICKET = "openTicket"
    LIST_TICKETS = "listTickets"
    GET_TICKET_DETAIL = "getTicketDetail"
    CLOSE_TICKET = "closeTicket"
    REPLY_TICKET = "replyTicket"
    TRANSCRIBE_AUDIO = "transcribeAudio"


# names used by assistants configured before the tool set was settled
TOOL_ALIASES = {
    "addUserEmail": ToolKind.REGISTER_USER,
    "saveUser": ToolKind.REGISTER_USER,
    "createTicket": ToolKind.OPEN_TICKET,
}


@dataclass(frozen=True)
class ToolSpec:
    kind: ToolKind
    args_model: type[ToolArguments]
    description: str

    def definition(self) -> dict:
        """Function tool entry for the assistant's `tools` list."""
        parameters = self.args_model.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.kind.value,
                "description": self.description,
                "parameters": parameters,
            },
        }


TOOL_SPECS = {
    spec.kind: spec
    for spec in (
        ToolSpec(ToolKind.REGISTER_USER, RegisterUserArgs,
                 "Register or update the user's email and name. Call before opening the first ticket."),
        ToolSpec(ToolKind.GET_DEPARTMENTS, GetDepartmentsArgs,
                 "List the departments that can receive tickets."),
        ToolSpec(ToolKind.OPEN_TICKET, OpenTicketArgs,
                 "Open a ticket for a registered user and notify the department."),
        ToolSpec(ToolKind.LIST_TICKETS, ListTicketsArgs,
                 "List the user's tickets that are not closed, newest first."),
        ToolSpec(ToolKind.GET_TICKET_DETAIL, TicketProtocolArgs,
                 "Get every detail of a ticket by protocol."),
        ToolSpec(ToolKind.CLOSE_TICKET, TicketProtocolArgs,
                 "Close a ticket by protocol."),
        ToolSpec(ToolKind.REPLY_TICKET, ReplyTicketArgs,
                 "Add a complement to an existing ticket and forward it to the department."),
        ToolSpec(ToolKind.TRANSCRIBE_AUDIO, TranscribeAudioArgs,
                 "Transcribe a voice message sent by the user."),
    )
}


def tool_definitions() -> list[dict]:
    return [spec.definition() for spec in TOOL_SPECS.values()]


class UnknownTool(SupportBotError):
    code = "UnknownTool"

    def __init__(self, name: str):
        super().__init__(f"{name} not found")
        self.name = name


class MalformedArguments(SupportBotError):
    code = "MalformedArguments"


@dataclass(frozen=True)
class ToolCallRequest:
    call_id: str
    tool_name: str
    arguments: Any = None

    @classmethod
    def from_api(cls, tool_call: dict) -> "ToolCallRequest":
        function = tool_call.get("function") or {}
        return cls(
            call_id=tool_call.get("id", ""),
            tool_name=function.get("name", ""),
            arguments=function.get("arguments"),
        )


@dataclass(frozen=True)
class ToolCallResult:
    call_id: str
    output: str
    is_error: bool = False

    def as_submission(self) -> dict:
        return {"tool_call_id": self.call_id, "output": self.output}


@dataclass(frozen=True)
class ParsedCall:
    call_id: str
    kind: ToolKind
    args: ToolArguments


def parse_call(request: ToolCallRequest) -> ParsedCall:
    try:
        kind = ToolKind(request.tool_name)
    except ValueError:
        kind = TOOL_ALIASES.get(request.tool_name)
    if kind is None:
        raise UnknownTool(request.tool_name or "<unnamed>")

    raw = request.arguments
    if raw is None or raw == "":
        raw = {}
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise MalformedArguments(f"Arguments for {kind.value} are not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise MalformedArguments(f"Arguments for {kind.value} must be a JSON object")

    try:
        args = TOOL_SPECS[kind].args_model.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in e.errors()
        )
        raise MalformedArguments(f"Invalid arguments for {kind.value}: {problems}") from e
    return ParsedCall(call_id=request.call_id, kind=kind, args=args)


def serialize_output(payload: dict) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


class SupportTools:
    """The operations behind each ToolKind."""

    def __init__(self, store, directory, mirror, notifier):
        self.store = store
        self.directory = directory
        self.mirror = mirror
        self.notifier = notifier
        self._handlers = {
            ToolKind.REGISTER_USER: self.register_user,
            ToolKind.GET_DEPARTMENTS: self.get_departments,
            ToolKind.OPEN_TICKET: self.open_ticket,
            ToolKind.LIST_TICKETS: self.list_tickets,
            ToolKind.GET_TICKET_DETAIL: self.get_ticket_detail,
            ToolKind.CLOSE_TICKET: self.close_ticket,
            ToolKind.REPLY_TICKET: self.reply_ticket,
            ToolKind.TRANSCRIBE_AUDIO: self.transcribe_audio,
        }

    def run(self, call: ParsedCall) -> dict:
        return self._handlers[call.kind](call.args)

    def register_user(self, args: RegisterUserArgs) -> dict:
        user = self.store.upsert_user(args.external_id, email=args.email, name=args.name)
        return {"success": True, "message": "Email registered successfully!", "user": user.model_dump()}

    def get_departments(self, args: GetDepartmentsArgs | None = None) -> dict:
        return {"departments": [d.model_dump() for d in self.directory.list()]}

    def open_ticket(self, args: OpenTicketArgs) -> dict:
        department = self.directory.resolve(args.department)
        ticket = self.store.open_ticket(
            args.external_id,
            department=department.name,
            subject=args.subject,
            description=args.description,
            attachments=args.attachments,
        )
        self._after_commit("spreadsheet append", self.mirror.append_ticket_row, ticket)
        self._after_commit("department email", self.notifier.notify_department, department.email, ticket)
        return {
            "success": True,
            "protocol": ticket.protocol,
            "status": ticket.status.value,
            "department": ticket.department,
            "message": (
                f"Ticket opened successfully!\n\nProtocol: {ticket.protocol}\n"
                f"Department: {ticket.department}\n\n"
                "You will receive updates here when the department answers."
            ),
        }

    def list_tickets(self, args: ListTicketsArgs) -> dict:
        return {"tickets": [t.summary() for t in self.store.list_open_tickets(args.external_id)]}

    def get_ticket_detail(self, args: TicketProtocolArgs) -> dict:
        return {"ticket": self.store.get_ticket(args.protocol).model_dump(mode="json")}

    def close_ticket(self, args: TicketProtocolArgs) -> dict:
        ticket, changed = self.store.close_ticket(args.protocol)
        if changed:
            self._after_commit("spreadsheet status", self.mirror.update_status_cell, ticket.protocol, TicketStatus.CLOSED)
        return {
            "success": True,
            "protocol": ticket.protocol,
            "already_closed": not changed,
            "message": "Ticket closed successfully!" if changed else "Ticket was already closed.",
        }

    def reply_ticket(self, args: ReplyTicketArgs) -> dict:
        ticket = self.store.get_ticket(args.protocol)
        department = self.directory.find(ticket.department)
        notified = False
        if department is None:
            logger.warning(f"Department {ticket.department} of {ticket.protocol} has no email, reply not forwarded")
        else:
            notified = bool(self._after_commit(
                "reply email", self.notifier.notify_reply, department.email, ticket, args.body, args.attachments
            ))
        return {
            "success": True,
            "protocol": ticket.protocol,
            "notified": notified,
            "message": "Complement added to the ticket. The department will be notified.",
        }

    def transcribe_audio(self, args: TranscribeAudioArgs) -> dict:
        return {"transcription": "[Audio transcription not implemented yet]"}

    def _after_commit(self, what: str, effect, *args):
        try:
            return effect(*args)
        except Exception:
            logger.exception(f"{what} failed after commit, ticket is kept")
            return None


class ToolDispatcher:
    def __init__(self, tools: SupportTools):
        self.tools = tools

    def dispatch(self, requests: list[ToolCallRequest]) -> list[ToolCallResult]:
        return [self.execute(request) for request in requests]

    def execute(self, request: ToolCallRequest) -> ToolCallResult:
        logger.info(f"Running tool {request.tool_name} ({request.call_id}) with {request.arguments!r}")
        try:
            call = parse_call(request)
            payload = self.tools.run(call)
        except SupportBotError as e:
            logger.warning(f"Tool {request.tool_name} ({request.call_id}) failed: {e.code}: {e.message}")
            return ToolCallResult(request.call_id, serialize_output(e.to_payload()), is_error=True)
        except Exception as e:
            logger.exception(f"Tool {request.tool_name} ({request.call_id}) raised")
            payload = {"error": str(e) or e.__class__.__name__, "code": "InternalError"}
            return ToolCallResult(request.call_id, serialize_output(payload), is_error=True)
        return ToolCallResult(request.call_id, serialize_output(payload))
