"""HTTP client for the hosted incident store, with SSE-backed subscriptions."""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import httpx

from .errors import PreconditionFailed, RecordNotFound, StoreError, SubscriptionError
from .incident_store import (
    ChangeCallback,
    IncidentStore,
    Subscription,
    invoke_callback,
    split_key,
)
from .retry_utils import RetryConfig, retry_async

logger = logging.getLogger(__name__)


class _RemoteSubscription(Subscription):
    def __init__(self, key: str, callback: ChangeCallback, store: "RemoteIncidentStore"):
        super().__init__(key, callback, store)
        self.task: Optional[asyncio.Task] = None
        self.connections = 0


class RemoteIncidentStore(IncidentStore):
    """Client for the LifeSync store service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
    ):
        """
        Initialize the store client.

        Args:
            base_url: Base URL of the store service
            timeout: Request timeout in seconds (streams never time out on read)
            retry_config: Backoff used when a subscription loses its connection
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig(
            max_attempts=5,
            initial_delay=0.5,
            max_delay=30.0,
            retryable_exceptions=[SubscriptionError],
        )
        self._client: Optional[httpx.AsyncClient] = None
        self._subscriptions: Dict[str, _RemoteSubscription] = {}

    async def __aenter__(self):
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def create(self, collection: str, record: Dict[str, Any]) -> str:
        client = self._get_client()

        try:
            response = await client.post(f"/api/v1/{collection}", json=record)
            if response.status_code >= 400:
                raise StoreError(f"Store rejected record: {self._detail(response)}")
            return response.json()["id"]

        except (KeyError, ValueError):
            raise StoreError("Store returned no record id")
        except httpx.ConnectError as e:
            raise StoreError(f"Failed to connect to store at {self.base_url}: {e}")
        except httpx.TimeoutException:
            raise StoreError(f"Request timed out after {self.timeout} seconds")
        except httpx.HTTPError as e:
            raise StoreError(f"HTTP error: {e}")

    async def update(
        self,
        key: str,
        fields: Dict[str, Any],
        expect: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        collection, record_id = split_key(key)
        if record_id is None:
            raise StoreError(f"Updates must target a single record, got '{key}'")
        client = self._get_client()

        try:
            response = await client.patch(
                f"/api/v1/{collection}/{record_id}",
                json={"fields": fields, "expect": expect},
            )

            if response.status_code == 404:
                raise RecordNotFound(key)
            elif response.status_code == 409:
                detail = response.json().get("detail") or {}
                raise PreconditionFailed(key, detail.get("current"))
            elif response.status_code >= 400:
                raise StoreError(f"Store rejected update: {self._detail(response)}")

            return response.json()

        except httpx.ConnectError as e:
            raise StoreError(f"Failed to connect to store at {self.base_url}: {e}")
        except httpx.TimeoutException:
            raise StoreError(f"Request timed out after {self.timeout} seconds")
        except httpx.HTTPError as e:
            raise StoreError(f"HTTP error: {e}")

    async def get(self, key: str) -> Optional[Any]:
        split_key(key)
        client = self._get_client()

        try:
            response = await client.get(f"/api/v1/{key}")
            if response.status_code == 404:
                return None
            elif response.status_code >= 400:
                raise StoreError(f"Store read failed: {self._detail(response)}")
            return response.json()

        except httpx.ConnectError as e:
            raise StoreError(f"Failed to connect to store at {self.base_url}: {e}")
        except httpx.TimeoutException:
            raise StoreError(f"Request timed out after {self.timeout} seconds")
        except httpx.HTTPError as e:
            raise StoreError(f"HTTP error: {e}")

    def subscribe(self, key: str, callback: ChangeCallback) -> Subscription:
        split_key(key)
        subscription = _RemoteSubscription(key, callback, self)
        self._subscriptions[subscription.id] = subscription
        subscription.task = asyncio.create_task(self._maintain(subscription))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.active = False
        self._subscriptions.pop(subscription.id, None)
        task = getattr(subscription, "task", None)
        if task is not None:
            task.cancel()

    async def close(self) -> None:
        subscriptions = list(self._subscriptions.values())
        for subscription in subscriptions:
            self.unsubscribe(subscription)
        await asyncio.gather(
            *(s.task for s in subscriptions if s.task is not None),
            return_exceptions=True,
        )
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _maintain(self, subscription: _RemoteSubscription):
        """
        Keep a subscription connected until it is cancelled.

        Backoff counts only attempts that never connected: after a stream that
        was up ends, the next round starts again from the first attempt.
        """
        while subscription.active:
            try:
                await retry_async(
                    self._stream, self.retry_config, subscription.id, subscription
                )
                logger.info(f"Stream for '{subscription.key}' ended; reconnecting")
                await asyncio.sleep(self.retry_config.initial_delay)
            except SubscriptionError as e:
                logger.error(
                    f"Subscription to '{subscription.key}' still down after "
                    f"{self.retry_config.max_attempts} attempts: {e}. "
                    f"Retrying in {self.retry_config.max_delay}s"
                )
                await asyncio.sleep(self.retry_config.max_delay)

    async def _stream(self, subscription: _RemoteSubscription):
        client = self._get_client()
        timeout = httpx.Timeout(self.timeout, read=None)
        connected = False

        try:
            async with client.stream(
                "GET", "/api/v1/stream", params={"key": subscription.key}, timeout=timeout
            ) as response:
                if response.status_code >= 400:
                    raise SubscriptionError(
                        f"Store refused subscription to '{subscription.key}' "
                        f"(HTTP {response.status_code})"
                    )
                connected = True
                subscription.connections += 1
                if subscription.connections > 1:
                    logger.info(f"Resubscribed to '{subscription.key}'")

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    try:
                        value = json.loads(line[len("data:"):].strip())
                    except ValueError:
                        logger.warning(f"Dropping unparseable event on '{subscription.key}'")
                        continue
                    try:
                        await invoke_callback(subscription.callback, value)
                    except Exception as e:
                        logger.error(
                            f"Subscriber callback for '{subscription.key}' failed: {e}",
                            exc_info=True,
                        )

        except httpx.HTTPError as e:
            if not connected:
                raise SubscriptionError(
                    f"Could not subscribe to '{subscription.key}': {e}"
                ) from e
            logger.warning(f"Lost subscription to '{subscription.key}': {e}")

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            return str(response.json().get("detail", "Unknown error"))
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
