from functools import lru_cache

from fastapi.concurrency import run_in_threadpool

from support_bot import config
from support_bot.errors import ChatTransportError
from support_bot.logging_config import get_logger
from support_bot.prompts.support_agent_prompt import support_agent_first_message
from support_bot.schemas.telegram import TelegramMessage
from support_bot.services.assistant_client import AssistantClient
from support_bot.services.departments import DepartmentDirectory, SheetDepartmentSource
from support_bot.services.google_services import build_gmail_service, build_sheets_service
from support_bot.services.notifier import GmailNotifier, NullNotifier
from support_bot.services.run_driver import TRANSIENT_ERROR_MESSAGE, InboundMessage, RunDriver, RunOutcome
from support_bot.services.sessions import InMemorySessionStore
from support_bot.services.sheets_mirror import GoogleSheetsMirror, NullMirror
from support_bot.services.telegram import TelegramClient
from support_bot.services.ticket_store import TicketStore
from support_bot.services.tools import SupportTools, ToolDispatcher

logger = get_logger(__name__)


class SupportBot:
    def __init__(self, telegram: TelegramClient, driver: RunDriver):
        self.telegram = telegram
        self.driver = driver

    def inbound_from(self, message: TelegramMessage) -> InboundMessage:
        sender = message.from_user
        return InboundMessage(
            sender_id=str(sender.id if sender else message.chat.id),
            chat_id=message.chat.id,
            sender_name=sender.full_name if sender else "",
            text=message.text or message.caption,
            attachments=self.telegram.resolve_attachments(message) if message.document or message.photo else [],
            voice_file_id=message.voice.file_id if message.voice else None,
        )

    async def handle_message(self, message: TelegramMessage) -> RunOutcome | None:
        try:
            inbound = await run_in_threadpool(self.inbound_from, message)
            logger.info(f"New message from {inbound.sender_name or inbound.sender_id}")
            outcome = await self.driver.handle(inbound)
        except Exception:
            logger.exception(f"Message {message.message_id} could not be handled")
            await run_in_threadpool(self.reply, message.chat.id, TRANSIENT_ERROR_MESSAGE)
            return None
        await run_in_threadpool(self.reply, inbound.chat_id, outcome.text)
        return outcome

    def greet(self, chat_id) -> None:
        self.reply(chat_id, support_agent_first_message.format(name=config.BOT_NAME, company=config.COMPANY_NAME))

    def reply(self, chat_id, text: str) -> None:
        try:
            self.telegram.send_message(chat_id, text)
        except ChatTransportError as e:
            logger.error(f"Could not deliver reply to chat {chat_id}: {e.message}")


def build_mirror_and_directory():
    sheets_service = None
    if config.GOOGLE_SERVICE_ACCOUNT_KEY and config.GOOGLE_SHEET_ID:
        sheets_service = build_sheets_service(config.GOOGLE_SERVICE_ACCOUNT_KEY)
    if sheets_service is None:
        logger.warning("Google Sheets not configured, tickets will not be mirrored")
        return NullMirror(), DepartmentDirectory()

    mirror = GoogleSheetsMirror(
        sheets_service, config.GOOGLE_SHEET_ID, config.TICKETS_SHEET_RANGE, timezone=config.SHEET_TIMEZONE,
    )
    source = None
    if config.DEPARTMENTS_SHEET_RANGE:
        source = SheetDepartmentSource(sheets_service, config.GOOGLE_SHEET_ID, config.DEPARTMENTS_SHEET_RANGE)
    return mirror, DepartmentDirectory(source)


def build_notifier():
    if not all((config.GMAIL_SENDER, config.GMAIL_CLIENT_ID, config.GMAIL_CLIENT_SECRET, config.GMAIL_REFRESH_TOKEN)):
        logger.warning("Gmail not configured, departments will not be emailed")
        return NullNotifier()
    service = build_gmail_service(config.GMAIL_CLIENT_ID, config.GMAIL_CLIENT_SECRET, config.GMAIL_REFRESH_TOKEN)
    return GmailNotifier(service, config.GMAIL_SENDER)


@lru_cache
def get_assistant_client() -> AssistantClient:
    return AssistantClient()


@lru_cache
def get_bot() -> SupportBot:
    mirror, directory = build_mirror_and_directory()
    tools = SupportTools(TicketStore(), directory, mirror, build_notifier())
    driver = RunDriver(
        client=get_assistant_client(),
        dispatcher=ToolDispatcher(tools),
        sessions=InMemorySessionStore(config.SESSION_TTL_SECONDS, config.SESSION_MAX_ENTRIES),
    )
    return SupportBot(TelegramClient(), driver)
