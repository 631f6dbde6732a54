from contextlib import asynccontextmanager

from fastapi import FastAPI

from support_bot import config
from support_bot.api.assistant_controller import router as assistant_router
from support_bot.api.telegram_controller import router as telegram_router
from support_bot.database import init_db
from support_bot.errors import ChatTransportError
from support_bot.logging_config import get_logger
from support_bot.services.telegram import TelegramClient

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting CAR bot...")
    missing = config.missing_settings()
    if missing:
        logger.error(f"Missing settings: {', '.join(missing)}")
        raise RuntimeError(f"Missing settings: {', '.join(missing)}")

    init_db()

    if config.TELEGRAM_WEBHOOK_URL:
        try:
            TelegramClient().set_webhook(config.TELEGRAM_WEBHOOK_URL)
        except ChatTransportError as e:
            logger.error(f"Could not register Telegram webhook: {e.message}")

    logger.info("CAR bot ready")
    yield


app = FastAPI(title="CAR Bot", lifespan=lifespan)

app.include_router(prefix="/telegram", router=telegram_router)
app.include_router(prefix="/api", router=assistant_router)


@app.get("/health")
async def health():
    return {"ok": True}
