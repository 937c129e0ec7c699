"""Server-sent events over httpx."""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx

from deskpilot.errors import ModelBackendError


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """Yield the ``data`` payload of each event in an SSE response.

    Multi-line data fields are joined with newlines; comments and other
    fields are ignored.
    """
    data: list[str] = []
    async for line in response.aiter_lines():
        if not line:
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if name == "data":
            data.append(value[1:] if value.startswith(" ") else value)
    if data:
        yield "\n".join(data)


async def raise_for_status(response: httpx.Response, backend: str) -> None:
    """Raise ModelBackendError with the body for a non-2xx response."""
    if response.is_success:
        return
    body = (await response.aread()).decode("utf-8", errors="replace")
    raise ModelBackendError(
        f"{backend} request failed",
        status_code=response.status_code,
        body=body,
    )
