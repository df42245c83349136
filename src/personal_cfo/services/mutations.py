from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from personal_cfo.core.exceptions import APIError, message_from_detail
from personal_cfo.services.cache import QueryCache, QueryKey
from personal_cfo.services.notifications import Notifier

T = TypeVar("T")

SuccessMessage = str | Callable[[T], str] | None


async def run_mutation(
    call: Callable[[], Awaitable[T]],
    cache: QueryCache,
    notifier: Notifier,
    *,
    invalidate: Sequence[QueryKey] = (),
    success: SuccessMessage = None,
    error_message: str = "Request failed",
) -> T:
    """Await a write call, then invalidate the keys it touched and notify.

    ``APIError`` is reported through the notifier and re-raised; the cache
    is left untouched in that case.
    """
    try:
        result = await call()
    except APIError as exc:
        notifier.error(message_from_detail(exc.detail) or error_message)
        raise

    cache.invalidate_many(list(invalidate))
    if success is not None:
        notifier.success(success(result) if callable(success) else success)
    return result
