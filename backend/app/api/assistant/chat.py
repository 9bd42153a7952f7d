import json
import logging
from typing import Optional

from app.core import config
from .tools import ToolContext, execute_tool, openai_tool_schemas

logger = logging.getLogger(__name__)

MAX_TOOL_ROUNDS = 5
MAX_TOKENS = 1000
TEMPERATURE = 0.7


def build_system_prompt(
    team_name: str, user_role: str, description: Optional[str] = None
) -> str:
    lines = [
        "You are an AI assistant for the invoice management system. "
        f'You\'re helping the team "{team_name}" with their invoice management tasks.',
        "",
        "Your capabilities include:",
        "- Creating and managing invoices",
        "- Analyzing invoice data and trends",
        "- Providing business insights",
        "- QuickBooks integration support",
        "- Financial reporting and analysis",
        "",
        f"Current user role: {user_role}",
        f"Team: {team_name}",
    ]
    if description:
        lines.append(f"Team description: {description}")
    lines += [
        "",
        "Use the available tools to look up or change invoice data instead of guessing. "
        "If you need more information to perform an action, ask the user for it.",
        "",
        "Always be professional, concise, and focus on practical business advice.",
    ]
    return "\n".join(lines)


def _assistant_message(message) -> dict:
    return {
        "role": "assistant",
        "content": message.content,
        "tool_calls": [
            {
                "id": call.id,
                "type": "function",
                "function": {
                    "name": call.function.name,
                    "arguments": call.function.arguments,
                },
            }
            for call in message.tool_calls
        ],
    }


async def _run_tool_call(call, ctx: ToolContext) -> dict:
    try:
        arguments = json.loads(call.function.arguments or "{}")
    except json.JSONDecodeError:
        return {"success": False, "error": "Tool arguments were not valid JSON"}
    logger.info("Assistant calling tool %s", call.function.name)
    return await execute_tool(call.function.name, arguments, ctx)


async def run_chat(
    openai_client,
    system_prompt: str,
    message: str,
    ctx: ToolContext,
    history: Optional[list[dict]] = None,
    model: Optional[str] = None,
    max_rounds: int = MAX_TOOL_ROUNDS,
) -> str:
    """
    Drive one user turn through the model, executing tool calls as they come.

    After ``max_rounds`` rounds of tool calls the model is asked for a final
    answer with tools disabled.
    """
    messages = [{"role": "system", "content": system_prompt}]
    messages += [{"role": m["role"], "content": m["content"]} for m in history or []]
    messages.append({"role": "user", "content": message})
    model = model or config.OPENAI_MODEL
    tools = openai_tool_schemas()

    for _ in range(max_rounds):
        response = await openai_client.chat.completions.create(
            model=model,
            messages=messages,
            tools=tools,
            max_tokens=MAX_TOKENS,
            temperature=TEMPERATURE,
        )
        reply = response.choices[0].message
        if not reply.tool_calls:
            return reply.content or ""

        messages.append(_assistant_message(reply))
        for call in reply.tool_calls:
            result = await _run_tool_call(call, ctx)
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": json.dumps(result, default=str),
                }
            )

    logger.warning("Assistant hit the tool round limit (%s)", max_rounds)
    response = await openai_client.chat.completions.create(
        model=model,
        messages=messages,
        max_tokens=MAX_TOKENS,
        temperature=TEMPERATURE,
    )
    return response.choices[0].message.content or ""
