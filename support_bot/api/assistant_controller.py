from fastapi import APIRouter, Depends, Form, HTTPException, Query
from fastapi.concurrency import run_in_threadpool

from support_bot import config
from support_bot.bot import get_assistant_client
from support_bot.errors import RunTransportError
from support_bot.prompts.support_agent_prompt import support_agent_first_message, support_agent_system_prompt
from support_bot.services.assistant_client import AssistantClient
from support_bot.services.tools import tool_definitions

router = APIRouter()


@router.post("/assistant")
async def create_assistant(
    agent_name: str = Form(config.BOT_NAME),
    company: str = Form(config.COMPANY_NAME),
    model: str = Form(config.OPENAI_MODEL),
    client: AssistantClient = Depends(get_assistant_client),
):
    instructions = support_agent_system_prompt.format(name=agent_name, company=company)
    try:
        assistant = await run_in_threadpool(
            client.create_assistant,
            name=f"{agent_name} - {company}",
            instructions=instructions,
            model=model,
            tools=tool_definitions(),
        )
    except RunTransportError as e:
        raise HTTPException(status_code=502, detail=e.message)

    return {"id": assistant["id"], "name": assistant.get("name"), "tools": len(assistant.get("tools", []))}


@router.get("/system_prompt")
async def system_prompt(
    agent_name: str = Query(config.BOT_NAME),
    company: str = Query(config.COMPANY_NAME),
):
    return support_agent_system_prompt.format(name=agent_name, company=company)


@router.get("/first_message")
async def first_message(
    agent_name: str = Query(config.BOT_NAME),
    company: str = Query(config.COMPANY_NAME),
):
    return support_agent_first_message.format(name=agent_name, company=company)
