from pydantic import BaseModel, ConfigDict, Field


class TelegramUser(BaseModel):
    id: int
    first_name: str = ""
    last_name: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


class TelegramChat(BaseModel):
    id: int


class TelegramDocument(BaseModel):
    file_id: str
    file_name: str | None = None


class TelegramPhotoSize(BaseModel):
    file_id: str
    width: int = 0
    height: int = 0


class TelegramVoice(BaseModel):
    file_id: str


class TelegramMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int
    from_user: TelegramUser | None = Field(default=None, alias="from")
    chat: TelegramChat
    text: str | None = None
    caption: str | None = None
    document: TelegramDocument | None = None
    photo: list[TelegramPhotoSize] | None = None
    voice: TelegramVoice | None = None

    @property
    def is_start_command(self) -> bool:
        return (self.text or "").strip().split("@")[0] == "/start"


class TelegramUpdate(BaseModel):
    update_id: int
    message: TelegramMessage | None = None
