"""JSON request helpers shared by the API client and the sync processor."""

import json
import logging
from typing import Any

import httpx

from .errors import NetworkUnavailable, ServerTransientError, ServerValidationError

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


async def send_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: dict[str, str],
    body: dict[str, Any] | None = None,
) -> httpx.Response:
    """Issue one HTTP request with a JSON body.

    Returns the response whatever its status. Transport failures, timeouts
    included, are raised as NetworkUnavailable.
    """
    content = json.dumps(body) if body is not None else None
    try:
        return await client.request(method, url, headers=headers, content=content)
    except httpx.TimeoutException as e:
        raise NetworkUnavailable(f"{method} {url} timed out") from e
    except httpx.RequestError as e:
        raise NetworkUnavailable(f"{method} {url} failed: {e}") from e


def error_message(response: httpx.Response) -> str:
    """Best-effort error text from a failed response."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or data)
    return str(data)


def raise_for_status(response: httpx.Response) -> None:
    """Classify a non-2xx response.

    Raises:
        ServerValidationError: 4xx, permanent.
        ServerTransientError: 5xx or any other non-2xx status, retryable.
    """
    status = response.status_code
    if 200 <= status < 300:
        return
    if 400 <= status < 500:
        raise ServerValidationError(status, error_message(response))
    raise ServerTransientError(status, error_message(response))


def decode_json(response: httpx.Response) -> Any:
    """Decode a successful response body; non-JSON bodies are wrapped."""
    if not response.content:
        return {"status": True}
    try:
        return response.json()
    except ValueError:
        logger.debug(f"Non-JSON response body ({len(response.content)} bytes)")
        return {"status": True, "message": response.text}
