"""HTTP utilities that bound external calls and capture failures."""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any, Mapping, Optional, Type

import httpx

from app.core.errors import PlatformAPIError, ResponseShapeError

logger = logging.getLogger(__name__)

_TRANSIENT_STATUSES = {
    HTTPStatus.TOO_MANY_REQUESTS,
    HTTPStatus.INTERNAL_SERVER_ERROR,
    HTTPStatus.BAD_GATEWAY,
    HTTPStatus.SERVICE_UNAVAILABLE,
    HTTPStatus.GATEWAY_TIMEOUT,
}


def is_transient_status(status_code: int) -> bool:
    return status_code in _TRANSIENT_STATUSES


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    params: Optional[Mapping[str, Any]] = None,
    data: Optional[Mapping[str, Any]] = None,
    timeout: Optional[float] = None,
    error_cls: Type[PlatformAPIError] = PlatformAPIError,
    description: str = "request",
) -> Any:
    """Send one request and return its decoded JSON body.

    Timeouts and other request failures become transient ``PlatformAPIError``
    instances; non-2xx responses keep their status and body. No retry is
    attempted.
    """
    request_kwargs: dict[str, Any] = {"params": params, "data": data}
    if timeout is not None:
        request_kwargs["timeout"] = timeout
    try:
        response = await client.request(method, url, **request_kwargs)
    except httpx.TimeoutException as exc:
        raise error_cls(f"{description} timed out", transient=True) from exc
    except httpx.RequestError as exc:
        raise error_cls(f"{description} failed: {exc}", transient=True) from exc

    if response.status_code >= HTTPStatus.BAD_REQUEST:
        logger.warning(
            "External API returned an error",
            extra={"description": description, "status_code": response.status_code},
        )
        raise error_cls(
            f"{description} failed with status {response.status_code}",
            status_code=response.status_code,
            body=response.text,
            transient=is_transient_status(response.status_code),
        )

    try:
        return response.json()
    except ValueError as exc:
        raise ResponseShapeError(f"{description} returned a non-JSON body") from exc


__all__ = ["is_transient_status", "request_json"]
