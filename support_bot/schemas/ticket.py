import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class TicketStatus(str, Enum):
    OPEN = "Open"
    CLOSED = "Closed"


class Attachment(BaseModel):
    name: str
    url: str


class UserRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: str
    email: str | None = None
    display_name: str | None = None


class TicketRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    protocol: str
    owner: UserRecord
    department: str
    subject: str
    description: str
    attachments: list[Attachment] = []
    status: TicketStatus
    opened_at: datetime.datetime
    closed_at: datetime.datetime | None = None

    def summary(self) -> dict:
        return {
            "protocol": self.protocol,
            "subject": self.subject,
            "department": self.department,
            "status": self.status.value,
            "opened_at": self.opened_at.isoformat(),
        }


class Department(BaseModel):
    name: str
    email: str
