"""
Incident record store.

Defines the store interface consumed by the reporter and responder sides, and
an in-process implementation used by the store service and in tests. Values
are plain JSON-compatible dicts keyed by `emergencies` (the whole collection)
or `emergencies/{id}` (one record).
"""

import asyncio
import copy
import inspect
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from ..models.incidents import SERVER_TIMESTAMP
from .errors import PreconditionFailed, RecordNotFound, StoreError

logger = logging.getLogger(__name__)

COLLECTION = "emergencies"

# Written once at creation
IMMUTABLE_FIELDS = frozenset({"createdAt", "location", "patientName", "bloodType"})

ChangeCallback = Callable[[Optional[Any]], Any]


def incident_key(incident_id: str) -> str:
    return f"{COLLECTION}/{incident_id}"


def split_key(key: str) -> Tuple[str, Optional[str]]:
    """
    Split a store key into collection and record id.

    Args:
        key: Either `<collection>` or `<collection>/<id>`

    Returns:
        Tuple of (collection, record id or None)

    Raises:
        StoreError: If the key is empty or nested deeper than one record
    """
    parts = key.strip("/").split("/")
    if not parts[0] or len(parts) > 2 or (len(parts) == 2 and not parts[1]):
        raise StoreError(f"Invalid store key '{key}'")
    if len(parts) == 1:
        return parts[0], None
    return parts[0], parts[1]


async def invoke_callback(callback: ChangeCallback, value: Optional[Any]):
    """Call a change callback, awaiting it when it is a coroutine function."""
    result = callback(value)
    if inspect.isawaitable(result):
        await result


class Subscription:
    """Handle for one live subscription. Release it with `cancel()`."""

    def __init__(self, key: str, callback: ChangeCallback, store: "IncidentStore"):
        self.id = uuid4().hex
        self.key = key
        self.callback = callback
        self.active = True
        self._store = store

    def cancel(self):
        if self.active:
            self._store.unsubscribe(self)


class IncidentStore(ABC):
    """Shared, subscribable key-value store holding incident records."""

    @abstractmethod
    async def create(self, collection: str, record: Dict[str, Any]) -> str:
        """Store a new record; the store assigns its id and `createdAt`."""

    @abstractmethod
    async def update(
        self,
        key: str,
        fields: Dict[str, Any],
        expect: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Merge `fields` into the record at `key` and return the committed record.

        Without `expect` the write is unconditional. With `expect` it commits
        only if every expected field equals its current value, otherwise it
        raises PreconditionFailed.
        """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the current value at `key`, or None."""

    @abstractmethod
    def subscribe(self, key: str, callback: ChangeCallback) -> Subscription:
        """Deliver the current value at `key` now and after every change."""

    @abstractmethod
    def unsubscribe(self, subscription: Subscription) -> None:
        """Stop delivery to a subscription and release its resources."""

    async def close(self) -> None:
        """Release every resource held by the store client."""


class _LocalSubscription(Subscription):
    def __init__(self, key: str, callback: ChangeCallback, store: "InMemoryIncidentStore"):
        super().__init__(key, callback, store)
        self.queue: asyncio.Queue = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None

    async def run(self):
        while True:
            value = await self.queue.get()
            try:
                await invoke_callback(self.callback, value)
            except Exception as e:
                logger.error(
                    f"Subscriber callback for '{self.key}' failed: {e}", exc_info=True
                )
            finally:
                self.queue.task_done()


class InMemoryIncidentStore(IncidentStore):
    """
    Incident store living in the current process.

    Writes commit under a single lock, so conditional updates are atomic and
    notifications for a key are queued in commit order. Each subscription has
    its own queue and delivery task; writers never wait for subscribers.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._subscriptions: Dict[str, List[_LocalSubscription]] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()

    async def create(self, collection: str, record: Dict[str, Any]) -> str:
        collection, record_id = split_key(collection)
        if record_id is not None:
            raise StoreError(f"Records are created in a collection, got '{record_id}'")

        async with self._lock:
            record_id = uuid4().hex
            stored = self._resolve(record)
            stored["createdAt"] = self._now()
            self._collections.setdefault(collection, {})[record_id] = stored
            self._notify(collection, record_id)

        logger.info(f"Created record {collection}/{record_id}")
        return record_id

    async def update(
        self,
        key: str,
        fields: Dict[str, Any],
        expect: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        collection, record_id = split_key(key)
        if record_id is None:
            raise StoreError(f"Updates must target a single record, got '{key}'")
        frozen = IMMUTABLE_FIELDS.intersection(fields)
        if frozen:
            raise StoreError(f"Fields {sorted(frozen)} of '{key}' are immutable")

        async with self._lock:
            current = self._collections.get(collection, {}).get(record_id)
            if current is None:
                raise RecordNotFound(key)

            if expect and any(current.get(f) != v for f, v in expect.items()):
                logger.info(f"Conditional update of {key} rejected: {expect}")
                raise PreconditionFailed(key, copy.deepcopy(current))

            merged = {**current, **self._resolve(fields)}
            # None deletes a field
            merged = {f: v for f, v in merged.items() if v is not None}
            self._collections[collection][record_id] = merged
            self._notify(collection, record_id)

        logger.info(f"Updated {key} fields={sorted(fields)}")
        return copy.deepcopy(merged)

    async def get(self, key: str) -> Optional[Any]:
        return self._value_at(key)

    def subscribe(self, key: str, callback: ChangeCallback) -> Subscription:
        split_key(key)
        subscription = _LocalSubscription(key, callback, self)
        self._subscriptions.setdefault(key, []).append(subscription)
        subscription.queue.put_nowait(self._value_at(key))
        subscription.task = asyncio.create_task(subscription.run())
        logger.debug(f"Subscribed {subscription.id} to '{key}'")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.key, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
            if not subscribers:
                del self._subscriptions[subscription.key]
        subscription.active = False
        queue = getattr(subscription, "queue", None)
        while queue is not None and not queue.empty():
            queue.get_nowait()
            queue.task_done()
        task = getattr(subscription, "task", None)
        if task is not None:
            task.cancel()
        logger.debug(f"Unsubscribed {subscription.id} from '{subscription.key}'")

    def subscription_count(self, key: Optional[str] = None) -> int:
        if key is not None:
            return len(self._subscriptions.get(key, []))
        return sum(len(subs) for subs in self._subscriptions.values())

    def record_count(self, collection: str = COLLECTION) -> int:
        return len(self._collections.get(collection, {}))

    async def flush(self):
        """Wait until every queued notification has been handed to its callback."""
        while True:
            subscriptions = self._all_subscriptions()
            await asyncio.gather(*(s.queue.join() for s in subscriptions))
            if all(s.queue.empty() for s in self._all_subscriptions()):
                return

    async def close(self) -> None:
        subscriptions = self._all_subscriptions()
        for subscription in subscriptions:
            self.unsubscribe(subscription)
        tasks = [s.task for s in subscriptions if s.task is not None]
        await asyncio.gather(*tasks, return_exceptions=True)

    def _all_subscriptions(self) -> List[_LocalSubscription]:
        return [s for subs in self._subscriptions.values() for s in subs]

    def _now(self) -> str:
        return self._clock().isoformat()

    def _resolve(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        resolved = copy.deepcopy(fields)
        for name, value in resolved.items():
            if value == SERVER_TIMESTAMP:
                resolved[name] = self._now()
        return resolved

    def _value_at(self, key: str) -> Optional[Any]:
        collection, record_id = split_key(key)
        records = self._collections.get(collection, {})
        if record_id is None:
            return copy.deepcopy(records) if records else None
        return copy.deepcopy(records.get(record_id))

    def _notify(self, collection: str, record_id: str):
        for key in (collection, f"{collection}/{record_id}"):
            subscribers = self._subscriptions.get(key, [])
            if not subscribers:
                continue
            value = self._value_at(key)
            for subscription in subscribers:
                subscription.queue.put_nowait(copy.deepcopy(value))
