# Chat endpoint: the model answers questions about the sales database by calling
# the schema and db tools, and the conversation is streamed back as UI message parts.


"""Chat-to-SQL endpoints.

POST /api/chat accepts the UI conversation ({"messages": [...]}) and streams
server-sent events, one JSON message part per event, ending with
``data: [DONE]``. The model may call two tools:

- ``schema``: returns the CREATE TABLE statements of the queryable tables.
- ``db``: validates a SELECT with the guardrails in ``utils.security`` and
  runs it. Failures come back as ``{"success": false, "error": ...}`` so the
  model can explain them instead of the request failing.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import BaseTool, tool
from typing import Any, AsyncIterator, Dict, List, Literal, Optional
from datetime import datetime
import logging
import uuid
import json

import utils.security as security
from config import AppConfiguration, get_app_config
from db import execute_query, get_client, get_schema
from Llm import get_chat_model

router = APIRouter(
    prefix="/api",
    tags=["chat"],
    responses={404: {"description": "Not found"}},
)

logger = logging.getLogger("chat_sql")

SYSTEM_PROMPT = """You are an expert SQL assistant that helps users to query their database using natural language.
{now}

You have access to following tools:
1. db tool - call this tool to query the database.
2. schema tool - call this tool to get database schema information which will help you to write sql query.

Rules:
1. generate ONLY SELECT queries (no INSERT, UPDATE, DELETE, DROP)
2. if the user asks for a query that is not related to the database, say that you are not able to help with that.
3. Return valid SQLite syntax.
4. Always use the schema information provided by the schema tool to write the sql query.
5. For date comparisons that refer to "today" or local dates, prefer SQLite's 'localtime' modifier, e.g., DATE(sale_date, 'localtime') = DATE('now', 'localtime').

Always respond in a helpful, conversational manner and tone while being technically accurate."""

EMPTY_DB_RESULT: Dict[str, Any] = {
    "columns": [],
    "rows": [],
    "columnTypes": [],
    "rowsAffected": 0,
    "lastInsertRowid": None,
}


class UIMessage(BaseModel):
    id: Optional[str] = None
    role: Literal["system", "user", "assistant"]
    parts: List[Dict[str, Any]] = Field(default_factory=list)
    content: Optional[str] = None  # plain-text clients may send content instead of parts


class ChatRequest(BaseModel):
    messages: List[UIMessage]


class DbQueryInput(BaseModel):
    query: str = Field(description="The SQL query to be ran")


def build_system_prompt(now: datetime) -> str:
    return SYSTEM_PROMPT.format(now=now.strftime("%Y-%m-%d %H:%M:%S"))


def run_db_query(query: str, app_config: AppConfiguration) -> Dict[str, Any]:
    try:
        logger.info("Querying database with query: %s", query)
        safe_query = security.validate_and_prepare_query(
            query,
            allowed_tables=app_config.allowed_tables,
            row_limit=app_config.default_row_limit,
        )
        client = get_client(app_config)
        result = execute_query(client, safe_query)
        return {"success": True, **result}
    except Exception as e:  # validation and sqlite errors are reported to the model
        logger.error("Database error: %s", e)
        return {"success": False, "error": str(e), **EMPTY_DB_RESULT}


def build_tools(app_config: AppConfiguration) -> List[BaseTool]:
    @tool("schema")
    def schema_tool() -> str:
        """Call this tool to get database schema information."""
        return get_schema()

    @tool("db", args_schema=DbQueryInput)
    def db_tool(query: str) -> Dict[str, Any]:
        """Call this tool to query a database."""
        return run_db_query(query, app_config)

    return [schema_tool, db_tool]


def _message_text(message: UIMessage) -> str:
    text = "".join(p.get("text", "") for p in message.parts if p.get("type") == "text")
    return text or (message.content or '')


def _split_steps(parts: List[Dict[str, Any]]) -> List[List[Dict[str, Any]]]:
    steps: List[List[Dict[str, Any]]] = [[]]
    for part in parts:
        if part.get("type") == "step-start":
            if steps[-1]:
                steps.append([])
            continue
        steps[-1].append(part)
    return [s for s in steps if s]


def _tool_content(output: Any) -> str:
    return output if isinstance(output, str) else json.dumps(output, default=str)


def _assistant_messages(message: UIMessage) -> List[BaseMessage]:
    if not message.parts:
        return [AIMessage(content=message.content or '')] if message.content else []
    out: List[BaseMessage] = []
    for step in _split_steps(message.parts):
        text = "".join(p.get("text", "") for p in step if p.get("type") == "text")
        calls = []
        results = []
        for part in step:
            ptype = part.get("type") or ''
            if not ptype.startswith("tool-") or part.get("state") != "output-available":
                continue
            call_id = part.get("toolCallId") or uuid.uuid4().hex
            calls.append({"name": ptype[len("tool-"):], "args": part.get("input") or {}, "id": call_id})
            results.append(ToolMessage(content=_tool_content(part.get("output")), tool_call_id=call_id))
        if text or calls:
            out.append(AIMessage(content=text, tool_calls=calls))
            out.extend(results)
    return out


def convert_to_model_messages(messages: List[UIMessage]) -> List[BaseMessage]:
    """Turn UI messages (typed parts) into LangChain chat messages."""
    out: List[BaseMessage] = []
    for m in messages:
        if m.role == "system":
            out.append(SystemMessage(content=_message_text(m)))
        elif m.role == "user":
            out.append(HumanMessage(content=_message_text(m)))
        else:
            out.extend(_assistant_messages(m))
    return out


def _sse(part: Dict[str, Any]) -> str:
    return f"data: {json.dumps(part, default=str)}\n\n"


async def _run_tool(tools_by_name: Dict[str, BaseTool], call: Dict[str, Any]) -> Any:
    selected = tools_by_name.get(call["name"])
    if selected is None:
        logger.warning("Model requested unknown tool %s", call["name"])
        return {"success": False, "error": f"Unknown tool: {call['name']}"}
    try:
        return await selected.ainvoke(call.get("args") or {})
    except Exception as e:  # bad arguments from the model
        logger.error("Tool %s failed: %s", call["name"], e)
        return {"success": False, "error": str(e)}


async def stream_chat(
    messages: List[BaseMessage],
    llm: Any,
    tools: List[BaseTool],
    max_steps: int = 5,
) -> AsyncIterator[str]:
    """Run the tool loop and yield SSE-encoded message parts.

    Each step streams the model's text, then executes the tools it asked for
    and feeds the results back. The loop ends on a step without tool calls or
    after ``max_steps`` steps.
    """
    tools_by_name = {t.name: t for t in tools}
    model = llm.bind_tools(tools)
    yield _sse({"type": "start", "messageId": uuid.uuid4().hex})
    try:
        for step in range(max_steps):
            yield _sse({"type": "start-step"})
            gathered = None
            text_id = None
            async for chunk in model.astream(messages):
                gathered = chunk if gathered is None else gathered + chunk
                delta = chunk.content if isinstance(chunk.content, str) else ''
                if not delta:
                    continue
                if text_id is None:
                    text_id = uuid.uuid4().hex
                    yield _sse({"type": "text-start", "id": text_id})
                yield _sse({"type": "text-delta", "id": text_id, "delta": delta})
            if text_id is not None:
                yield _sse({"type": "text-end", "id": text_id})

            # the AIMessage and its ToolMessages must share one id per call
            tool_calls = [
                {**call, "id": call.get("id") or uuid.uuid4().hex}
                for call in (gathered.tool_calls if gathered is not None else [])
            ]
            if gathered is not None:
                messages.append(AIMessage(content=gathered.content, tool_calls=tool_calls))
            if not tool_calls:
                yield _sse({"type": "finish-step"})
                break

            for call in tool_calls:
                call_id = call["id"]
                yield _sse({
                    "type": "tool-input-available",
                    "toolCallId": call_id,
                    "toolName": call["name"],
                    "input": call.get("args") or {},
                })
                output = await _run_tool(tools_by_name, call)
                messages.append(ToolMessage(content=_tool_content(output), tool_call_id=call_id))
                yield _sse({"type": "tool-output-available", "toolCallId": call_id, "output": output})
            yield _sse({"type": "finish-step"})
            logger.debug("Step %s finished with %s tool call(s)", step + 1, len(tool_calls))
        yield _sse({"type": "finish"})
    except Exception as e:
        logger.exception("Chat stream failed")
        yield _sse({"type": "error", "errorText": str(e)})
    yield "data: [DONE]\n\n"


@router.post("/chat")
async def chat(
    body: ChatRequest,
    app_config: AppConfiguration = Depends(get_app_config),
    llm: Any = Depends(get_chat_model),
):
    messages: List[BaseMessage] = [SystemMessage(content=build_system_prompt(datetime.now()))]
    messages.extend(convert_to_model_messages(body.messages))
    logger.info("Chat request with %s message(s)", len(body.messages))
    return StreamingResponse(
        stream_chat(messages, llm, build_tools(app_config), max_steps=app_config.max_steps),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.get("/schema")
async def schema_info(app_config: AppConfiguration = Depends(get_app_config)) -> Dict[str, Any]:
    return {"schema": get_schema(), "allowed_tables": app_config.allowed_tables}
