import requests

from support_bot.config import HTTP_TIMEOUT_SECONDS, TELEGRAM_API_URL, TELEGRAM_TOKEN
from support_bot.errors import ChatTransportError
from support_bot.logging_config import get_logger
from support_bot.schemas.telegram import TelegramMessage
from support_bot.schemas.ticket import Attachment

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 4096


class TelegramClient:
    def __init__(self, token: str | None = TELEGRAM_TOKEN, api_url: str = TELEGRAM_API_URL,
                 timeout_s: float = HTTP_TIMEOUT_SECONDS, session: requests.Session | None = None):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout_s = timeout_s
        self.http = session or requests.Session()

    def _call(self, method: str, payload: dict) -> dict:
        url = f"{self.api_url}/bot{self.token}/{method}"
        try:
            resp = self.http.post(url, json=payload, timeout=self.timeout_s)
            data = resp.json()
        except requests.RequestException as e:
            raise ChatTransportError(f"Network error calling Telegram {method}: {e}") from e
        except ValueError as e:
            raise ChatTransportError(f"Telegram {method} response was not valid JSON") from e

        if not data.get("ok"):
            raise ChatTransportError(f"Telegram {method} failed: {data.get('description', resp.status_code)}")
        return data.get("result")

    def send_message(self, chat_id: int | str, text: str) -> None:
        for start in range(0, len(text), MAX_MESSAGE_LENGTH):
            self._call("sendMessage", {"chat_id": chat_id, "text": text[start:start + MAX_MESSAGE_LENGTH]})

    def set_webhook(self, url: str) -> None:
        self._call("setWebhook", {"url": url, "allowed_updates": ["message"]})
        logger.info(f"Telegram webhook set to {url}")

    def file_url(self, file_id: str) -> str:
        result = self._call("getFile", {"file_id": file_id})
        file_path = (result or {}).get("file_path")
        if not file_path:
            raise ChatTransportError(f"Telegram getFile returned no path for {file_id}")
        return f"{self.api_url}/file/bot{self.token}/{file_path}"

    def resolve_attachments(self, message: TelegramMessage) -> list[Attachment]:
        """Document and largest photo of a message as downloadable links.

        Any failure drops all attachments of the message; the text still goes through.
        """
        attachments = []
        try:
            if message.document:
                attachments.append(Attachment(
                    name=message.document.file_name or f"document_{message.document.file_id}",
                    url=self.file_url(message.document.file_id),
                ))
            if message.photo:
                photo = message.photo[-1]
                attachments.append(Attachment(name=f"photo_{photo.file_id}.jpg", url=self.file_url(photo.file_id)))
        except ChatTransportError as e:
            logger.error(f"Could not resolve attachments of message {message.message_id}: {e.message}")
            return []
        return attachments
