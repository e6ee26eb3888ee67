"""Server-sent-event framing, outbound and inbound."""

import json
from typing import Any, AsyncIterable, AsyncIterator, Dict, Union

from pydantic import BaseModel

DONE_MARKER = "[DONE]"
DONE_EVENT = f"data: {DONE_MARKER}\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(payload: Union[Dict[str, Any], BaseModel]) -> str:
    """Frame one JSON payload as a ``data:`` event."""
    if isinstance(payload, BaseModel):
        to_wire = getattr(payload, "to_wire", None)
        payload = to_wire() if to_wire else payload.model_dump(mode="json", exclude_none=True)
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def aiter_sse_data(lines: AsyncIterable[str]) -> AsyncIterator[str]:
    """
    Yield the ``data`` payload of each event in a line stream.

    Multi-line data fields are joined with newlines; comments and other fields
    (``event``, ``id``, ``retry``) are ignored.
    """
    data_lines: list[str] = []
    async for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data_lines:
                yield "\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data_lines.append(value[1:] if value.startswith(" ") else value)
    if data_lines:
        yield "\n".join(data_lines)
