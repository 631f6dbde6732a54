class SupportBotError(Exception):
    code = "SupportBotError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {"error": self.message, "code": self.code}


class UserNotFound(SupportBotError):
    code = "UserNotFound"

    def __init__(self, external_id: str):
        super().__init__(f"User {external_id} not found. Register an email first.")
        self.external_id = external_id


class TicketNotFound(SupportBotError):
    code = "TicketNotFound"

    def __init__(self, protocol: str):
        super().__init__(f"Ticket {protocol} not found")
        self.protocol = protocol


class UnknownDepartment(SupportBotError):
    code = "UnknownDepartment"

    def __init__(self, department: str, known: list[str]):
        super().__init__(
            f"Department '{department}' does not exist. Valid options: {', '.join(known)}"
        )
        self.department = department


class StorageError(SupportBotError):
    code = "StorageError"


class MirrorError(SupportBotError):
    code = "MirrorError"


class NotificationError(SupportBotError):
    code = "NotificationError"


class RunTransportError(SupportBotError):
    code = "RunTransportError"


class ChatTransportError(SupportBotError):
    code = "ChatTransportError"
