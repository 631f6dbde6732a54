import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./car_bot.db")

TELEGRAM_TOKEN = os.environ.get("TELEGRAM_TOKEN")
TELEGRAM_API_URL = os.environ.get("TELEGRAM_API_URL", "https://api.telegram.org")
TELEGRAM_WEBHOOK_URL = os.environ.get("TELEGRAM_WEBHOOK_URL")

OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_ASSISTANT_ID = os.environ.get("OPENAI_ASSISTANT_ID")
OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")

GOOGLE_SERVICE_ACCOUNT_KEY = os.environ.get("GOOGLE_SERVICE_ACCOUNT_KEY")
GOOGLE_SHEET_ID = os.environ.get("GOOGLE_SHEET_ID")
TICKETS_SHEET_RANGE = os.environ.get("TICKETS_SHEET_RANGE", "A:I")
DEPARTMENTS_SHEET_RANGE = os.environ.get("DEPARTMENTS_SHEET_RANGE")
SHEET_TIMEZONE = os.environ.get("SHEET_TIMEZONE", "America/Sao_Paulo")

GMAIL_SENDER = os.environ.get("GMAIL_SENDER")
GMAIL_CLIENT_ID = os.environ.get("GMAIL_CLIENT_ID")
GMAIL_CLIENT_SECRET = os.environ.get("GMAIL_CLIENT_SECRET")
GMAIL_REFRESH_TOKEN = os.environ.get("GMAIL_REFRESH_TOKEN")

RUN_POLL_INTERVAL_SECONDS = float(os.environ.get("RUN_POLL_INTERVAL_SECONDS", "0.5"))
RUN_MAX_POLL_ATTEMPTS = int(os.environ.get("RUN_MAX_POLL_ATTEMPTS", "20"))
HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "15"))

SESSION_TTL_SECONDS = float(os.environ.get("SESSION_TTL_SECONDS", "1800"))
SESSION_MAX_ENTRIES = int(os.environ.get("SESSION_MAX_ENTRIES", "1000"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

BOT_NAME = os.environ.get("BOT_NAME", "CAR")
COMPANY_NAME = os.environ.get("COMPANY_NAME", "KX3")

REQUIRED_SETTINGS = ("TELEGRAM_TOKEN", "OPENAI_API_KEY", "OPENAI_ASSISTANT_ID")


def missing_settings(required=REQUIRED_SETTINGS) -> list[str]:
    """Names from `required` that have no value in this module."""
    values = globals()
    return [name for name in required if not values.get(name)]
