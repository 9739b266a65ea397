"""Client-side handling of streamed UI messages.

These helpers fold the event stream from ``POST /api/chat`` into UI
messages and decide what the chat view shows: narrated text (with data
listings stripped when a real table is available), the query result table,
and progress hints.
"""
from __future__ import annotations

import json
import re
import uuid
from typing import Any, Dict, Iterable, Iterator, List, Optional

TOOL_PART_TYPES = ("tool-db", "tool-schema")

MARKDOWN_SEPARATOR = re.compile(r"^\|[\s\-:|]+\|$")
HEADER_ROW = re.compile(r"^(id|name|product|quantity|total|sale|customer|region)", re.IGNORECASE)
ENTRY_LINE = re.compile(r"^Entry\s+\d+:", re.IGNORECASE)
FIELD_LINE = re.compile(r"^(ID|Product ID|Quantity|Total Amount|Sale Date|Customer|Region):", re.IGNORECASE)
BULLET_FIELD = re.compile(r"^[*\-•]\s*(ID|Product|Quantity|Total|Sale|Customer|Region):", re.IGNORECASE)
NUMBERED_FIELD = re.compile(r"^\d+\.\s*(ID|Product ID|Quantity|Total Amount|Sale Date|Customer|Region):", re.IGNORECASE)
ANY_FIELD = re.compile(r"(ID|Product ID|Quantity|Total Amount|Sale Date|Customer|Region):", re.IGNORECASE)
CLOSING_PHRASE = re.compile(r"^(Let me know|If you need|Need anything else|Anything else)", re.IGNORECASE)

LEFTOVER_PHRASES = (
    re.compile(r"^Here's the list of[^\n]*:\n*", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^(Here are|Here is|The list of|The sales)[^\n]*:\n*", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^If you need more information[^\n]*\n*", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^Let me know if you need anything else[^\n]*\n*", re.IGNORECASE | re.MULTILINE),
    re.compile(r"\d+\s+rows?\s*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*\n", re.MULTILINE),
)


def new_message(role: str, text: str = '') -> Dict[str, Any]:
    parts = [{"type": "text", "text": text}] if text else []
    return {"id": uuid.uuid4().hex, "role": role, "parts": parts}


def iter_sse(lines: Iterable[str]) -> Iterator[Dict[str, Any]]:
    """Yield the JSON parts of a server-sent event stream, stopping at [DONE]."""
    for line in lines:
        line = line.strip()
        if not line.startswith("data:"):
            continue
        payload = line[len("data:"):].strip()
        if payload == "[DONE]":
            return
        if payload:
            yield json.loads(payload)


def _tool_part(message: Dict[str, Any], call_id: str) -> Optional[Dict[str, Any]]:
    for part in message["parts"]:
        if part.get("toolCallId") == call_id:
            return part
    return None


def apply_chunk(message: Dict[str, Any], chunk: Dict[str, Any]) -> Dict[str, Any]:
    """Fold one stream part into ``message`` (in place) and return it."""
    kind = chunk.get("type")
    parts = message.setdefault("parts", [])
    if kind == "start":
        message["id"] = chunk.get("messageId") or message.get("id")
    elif kind == "start-step":
        parts.append({"type": "step-start"})
    elif kind == "text-start":
        parts.append({"type": "text", "text": '', "id": chunk.get("id"), "state": "streaming"})
    elif kind == "text-delta":
        target = next((p for p in reversed(parts) if p.get("type") == "text" and p.get("id") == chunk.get("id")), None)
        if target is None:
            target = {"type": "text", "text": '', "id": chunk.get("id"), "state": "streaming"}
            parts.append(target)
        target["text"] += chunk.get("delta", '')
    elif kind == "text-end":
        for part in parts:
            if part.get("type") == "text" and part.get("id") == chunk.get("id"):
                part["state"] = "done"
    elif kind == "tool-input-available":
        parts.append({
            "type": f"tool-{chunk.get('toolName')}",
            "toolCallId": chunk.get("toolCallId"),
            "input": chunk.get("input"),
            "state": "input-available",
        })
    elif kind == "tool-output-available":
        part = _tool_part(message, chunk.get("toolCallId"))
        if part is not None:
            part["output"] = chunk.get("output")
            part["state"] = "output-available"
    elif kind == "error":
        message["error"] = chunk.get("errorText")
    return message


def has_active_tool(message: Dict[str, Any]) -> bool:
    return any(p.get("type") in TOOL_PART_TYPES for p in message.get("parts", []))


def show_processing(messages: List[Dict[str, Any]], streaming: bool) -> bool:
    if not streaming or not messages:
        return False
    return any(p.get("type") == "step-start" for p in messages[-1].get("parts", []))


def get_table_data(message: Dict[str, Any]) -> Optional[Dict[str, List[Any]]]:
    """Columns and rows of the first db tool call in ``message`` when it succeeded."""
    db_part = next((p for p in message.get("parts", []) if p.get("type") == "tool-db"), None)
    output = (db_part or {}).get("output")
    if not isinstance(output, dict) or not output.get("success"):
        return None
    columns = output.get("columns")
    raw_rows = output.get("rows")
    if not columns or raw_rows is None:
        return None
    rows: List[List[Any]] = []
    for row in raw_rows:
        if isinstance(row, list):
            rows.append(row)
        elif isinstance(row, dict):
            rows.append([row.get(col) for col in columns])
        else:
            rows.append([])
    return {"columns": list(columns), "rows": rows}


def _is_data_line(trimmed: str) -> bool:
    is_markdown_line = trimmed.startswith("|")
    tab_count = trimmed.count("\t")
    looks_like_data_row = tab_count >= 2 and len(trimmed) > 10
    is_header_row = bool(HEADER_ROW.match(trimmed)) and (tab_count >= 2 or is_markdown_line)
    is_key_value = bool(ENTRY_LINE.match(trimmed)) or (
        bool(FIELD_LINE.match(trimmed))
        and ',' in trimmed
        and ("ID:" in trimmed or "Product ID:" in trimmed)
    )
    return (
        is_markdown_line
        or bool(MARKDOWN_SEPARATOR.match(trimmed))
        or looks_like_data_row
        or is_header_row
        or is_key_value
        or bool(BULLET_FIELD.match(trimmed))
        or bool(NUMBERED_FIELD.match(trimmed))
        or len(ANY_FIELD.findall(trimmed)) >= 3
    )


def clean_text_from_tables(text: str, has_table: bool) -> str:
    """Drop the model's own listing of rows when the result table is shown anyway."""
    if not has_table:
        return text

    cleaned_lines: List[str] = []
    in_data_section = False
    for line in text.split("\n"):
        trimmed = line.strip()
        if _is_data_line(trimmed):
            in_data_section = True
            continue
        if in_data_section:
            in_data_section = False
            if CLOSING_PHRASE.match(trimmed):
                continue
        cleaned_lines.append(line)

    cleaned = "\n".join(cleaned_lines)
    for pattern in LEFTOVER_PHRASES:
        cleaned = pattern.sub('', cleaned)
    return cleaned.strip()


def _cell(value: Any) -> str:
    if value is None:
        return "*null*"
    return str(value).replace("|", "\\|").replace("\n", " ")


def render_table_markdown(table: Dict[str, List[Any]]) -> str:
    columns = table["columns"]
    rows = table["rows"]
    lines = [
        "| " + " | ".join(_cell(c) for c in columns) + " |",
        "| " + " | ".join("---" for _ in columns) + " |",
    ]
    for row in rows:
        cells = [_cell(v) for v in row] + [''] * (len(columns) - len(row))
        lines.append("| " + " | ".join(cells) + " |")
    footer = f"{len(rows)} {'row' if len(rows) == 1 else 'rows'}"
    return "\n".join(lines) + f"\n\n_{footer}_"


def render_message(message: Dict[str, Any]) -> str:
    """Markdown shown in the chat for one UI message; tool and reasoning parts stay hidden."""
    if message.get("role") == "user":
        return "".join(p.get("text", '') for p in message.get("parts", []) if p.get("type") == "text")

    table = get_table_data(message)
    blocks: List[str] = []
    for part in message.get("parts", []):
        if part.get("type") != "text":
            continue
        cleaned = clean_text_from_tables(part.get("text", ''), table is not None)
        if cleaned.strip():
            blocks.append(cleaned)
    if table and table["rows"]:
        blocks.append(render_table_markdown(table))
    if has_active_tool(message) and table is None:
        blocks.append("_Querying database..._")
    if message.get("error"):
        blocks.append(f"**Error:** {message['error']}")
    return "\n\n".join(blocks)
