"""
Host Content Store integration.

The workflow only consumes two calls from the site's live content store:
``publish(payload) -> reference`` and ``unpublish(reference)``. This module
defines that contract, an HTTP client for it, and the publisher wrapper the
engines use to enforce timeouts and map failures onto PublishFailureError.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import ContentNotFoundError, ContentStoreError, PublishFailureError

logger = logging.getLogger(__name__)


class HostContentStore(Protocol):
    async def publish(self, payload: Dict[str, Any]) -> str:
        """Make content live and return an opaque reference to it"""
        ...

    async def unpublish(self, reference: str) -> None:
        """Remove previously published content; raises ContentNotFoundError"""
        ...


class HttpContentStore:
    """
    HTTP client for a host content store exposing:

    - ``POST   {base_url}/content``              -> ``{"reference": "..."}``
    - ``DELETE {base_url}/content/{reference}``  -> 204 / 404
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        connect_attempts: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout, transport=transport
        )
        self._connect_attempts = max(1, connect_attempts)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        # Only connection failures are retried: the request never reached the
        # store, so repeating it cannot publish twice.
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(httpx.ConnectError),
            stop=stop_after_attempt(self._connect_attempts),
            wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ContentStoreError(f"Content store timed out: {e}", retry_safe=True) from e
        except httpx.TransportError as e:
            raise ContentStoreError(f"Content store unreachable: {e}", retry_safe=True) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        if response.status_code < 400:
            return
        detail = response.text[:200]
        raise ContentStoreError(
            f"Content store {operation} failed with status {response.status_code}: {detail}",
            retry_safe=response.status_code >= 500,
            status_code=response.status_code,
        )

    async def publish(self, payload: Dict[str, Any]) -> str:
        response = await self._send("POST", "/content", json=payload)
        self._raise_for_status(response, "publish")
        try:
            reference = response.json().get("reference")
        except ValueError as e:
            raise ContentStoreError("Content store returned invalid JSON", retry_safe=False) from e
        if not reference:
            raise ContentStoreError("Content store response missing reference", retry_safe=False)
        return str(reference)

    async def unpublish(self, reference: str) -> None:
        response = await self._send("DELETE", f"/content/{reference}")
        if response.status_code == 404:
            raise ContentNotFoundError(reference)
        self._raise_for_status(response, "unpublish")


class ContentPublisher:
    """Applies the publish timeout and normalizes store failures.

    A timeout or transport failure is reported as retry-safe; a rejection by
    the store (4xx) is not. Whatever the store did with a timed-out call is
    the store's to reconcile.
    """

    def __init__(self, store: HostContentStore, timeout: float = 10.0):
        self.store = store
        self.timeout = timeout

    async def publish(self, payload: Dict[str, Any], *, record_id: Optional[int] = None) -> str:
        try:
            reference = await asyncio.wait_for(self.store.publish(payload), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise PublishFailureError(
                f"Publish timed out after {self.timeout}s", retry_safe=True, record_id=record_id
            ) from e
        except ContentStoreError as e:
            raise PublishFailureError(str(e), retry_safe=e.retry_safe, record_id=record_id) from e
        if not reference:
            raise PublishFailureError(
                "Content store returned an empty reference", retry_safe=False, record_id=record_id
            )
        return reference

    async def unpublish(self, reference: str, *, record_id: Optional[int] = None) -> bool:
        """Take content down; returns False if the store no longer had it."""
        try:
            await asyncio.wait_for(self.store.unpublish(reference), timeout=self.timeout)
        except ContentNotFoundError:
            logger.warning(
                f"Published content {reference} for record {record_id} was already removed"
            )
            return False
        except asyncio.TimeoutError as e:
            raise PublishFailureError(
                f"Unpublish timed out after {self.timeout}s", retry_safe=True, record_id=record_id
            ) from e
        except ContentStoreError as e:
            raise PublishFailureError(str(e), retry_safe=e.retry_safe, record_id=record_id) from e
        return True
