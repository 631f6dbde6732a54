from fastapi import APIRouter, BackgroundTasks, Depends

from support_bot.bot import SupportBot, get_bot
from support_bot.schemas.telegram import TelegramUpdate

router = APIRouter()


@router.post("/webhook")
async def telegram_webhook(
    update: TelegramUpdate,
    background_tasks: BackgroundTasks,
    bot: SupportBot = Depends(get_bot),
):
    message = update.message
    if message is None:
        return {"ok": True, "handled": False}

    if message.is_start_command:
        background_tasks.add_task(bot.greet, message.chat.id)
    else:
        background_tasks.add_task(bot.handle_message, message)

    return {"ok": True, "handled": True}
