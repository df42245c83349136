"""
Errors raised by the backend API client.
"""
from typing import Any

import httpx

DEFAULT_ERROR_MESSAGE = "Request failed"


class APIError(Exception):
    """A backend call failed; ``message`` is what gets shown to the user."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail


class UnauthorizedError(APIError):
    """HTTP 401. ``redirect_to`` is ``None`` when the login redirect was suppressed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = 401,
        detail: Any = None,
        redirect_to: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, detail=detail)
        self.redirect_to = redirect_to


def message_from_detail(detail: Any) -> str | None:
    if isinstance(detail, str) and detail.strip():
        return detail
    if isinstance(detail, list):
        messages = [
            str(item.get("msg"))
            for item in detail
            if isinstance(item, dict) and item.get("msg")
        ]
        if messages:
            return "; ".join(messages)
    return None


def error_detail(response: httpx.Response) -> Any:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        return payload.get("detail")
    return None


def error_message(response: httpx.Response) -> str:
    message = message_from_detail(error_detail(response))
    if message:
        return message
    return response.reason_phrase or DEFAULT_ERROR_MESSAGE
