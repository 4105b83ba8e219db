from __future__ import annotations

import asyncio
import time

import httpx


async def fetch(
    client: httpx.AsyncClient,
    *,
    url: str,
    user_agent: str,
    timeout_seconds: float,
    etag: str | None = None,
    last_modified: str | None = None,
) -> tuple[int, bytes | None, dict[str, str], int]:
    """GET ``url`` with a hard deadline over the whole exchange.

    ``httpx.Timeout`` only bounds each connect/read step, so a server that
    trickles bytes is cut off by ``asyncio.timeout``, which raises
    ``TimeoutError``.
    """
    headers = {
        "User-Agent": user_agent,
        "Accept": "text/html, application/xhtml+xml, */*",
    }
    if etag is not None:
        headers["If-None-Match"] = etag
    if last_modified is not None:
        headers["If-Modified-Since"] = last_modified

    timeout = httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds))
    started = time.monotonic()
    async with asyncio.timeout(timeout_seconds):
        response = await client.get(url, headers=headers, timeout=timeout)
    elapsed_ms = int((time.monotonic() - started) * 1000)
    return (
        response.status_code,
        (response.content if response.status_code == 200 else None),
        {k.lower(): v for k, v in response.headers.items()},
        elapsed_ms,
    )
