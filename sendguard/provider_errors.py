"""Maps raw provider failures onto caller-facing error classes."""

from typing import Awaitable, Callable, NoReturn, TypeVar

from sendguard.errors import ErrorCode, ProviderError, ProviderHttpError, SendGuardError

T = TypeVar("T")

BODY_SNIPPET_LENGTH = 180

_STATUS_CODES = {
    400: ErrorCode.BAD_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
    429: ErrorCode.TOO_MANY_REQUESTS,
}


def status_to_code(status: int) -> ErrorCode:
    return _STATUS_CODES.get(status, ErrorCode.INTERNAL_SERVER_ERROR)


def build_provider_message(error: ProviderHttpError, context_message: str) -> str:
    snippet = error.body.strip()[:BODY_SNIPPET_LENGTH]
    if not snippet:
        return f"{context_message} ({error.provider} {error.status})"
    return f"{context_message} ({error.provider} {error.status}): {snippet}"


def map_provider_error(error: BaseException, context_message: str) -> NoReturn:
    """Re-raise ``error`` as a SendGuardError carrying ``context_message``."""
    if isinstance(error, ProviderHttpError):
        raise ProviderError(
            build_provider_message(error, context_message),
            code=status_to_code(error.status),
            provider=error.provider,
            status=error.status,
            body=error.body[:BODY_SNIPPET_LENGTH],
        ) from error
    if isinstance(error, SendGuardError):
        raise error
    raise ProviderError(context_message) from error


async def with_provider_error_mapping(
    operation: Callable[[], Awaitable[T]], context_message: str
) -> T:
    try:
        return await operation()
    except Exception as e:
        map_provider_error(e, context_message)
