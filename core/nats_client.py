"""
NATS JetStream Client for Python Microservices

Thin wrapper around nats-py providing the Event envelope shared by the
marketplace services, stream bootstrap and pull-based durable consumers.
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import nats
from nats.errors import TimeoutError as NATSTimeoutError
from nats.js.errors import BadRequestError, NotFoundError


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


logger = logging.getLogger(__name__)


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: str,
        source: str,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type
        self.source = source
        self.data = data
        self.subject = subject
        self.timestamp = datetime.utcnow().isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event


class NATSEventBus:
    """
    NATS JetStream event bus.

    Subjects map onto one stream per prefix (``inventory.*`` ->
    ``inventory-stream``); subscriptions are durable pull consumers.
    """

    def __init__(self, service_name: str, nats_url: str = "nats://localhost:4222"):
        self.service_name = service_name
        self.nats_url = nats_url

        self._nc = None
        self._js = None
        self._streams: Dict[str, bool] = {}
        self._subscriptions: Dict[str, bool] = {}  # pattern -> active
        self._subscription_tasks: List[asyncio.Task] = []

        logger.info(f"NATS EventBus initialized: {self.nats_url}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(self.nats_url, name=self.service_name)
            self._js = self._nc.jetstream()
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS at {self.nats_url}: {e}")
            raise

    def _get_stream_name_for_event(self, event_type: str) -> str:
        prefix = event_type.split('.')[0]
        return f"{prefix}-stream"

    async def _ensure_stream(self, event_type: str) -> str:
        prefix = event_type.split('.')[0]
        stream_name = self._get_stream_name_for_event(prefix)
        if not self._streams.get(stream_name):
            try:
                await self._js.add_stream(name=stream_name, subjects=[f"{prefix}.>"])
            except BadRequestError as e:
                # Stream already exists with a compatible config
                logger.debug(f"Stream creation note: {e}")
            self._streams[stream_name] = True
        return stream_name

    async def publish_event(self, event: Event) -> bool:
        """Publish an event to its JetStream stream"""
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return False

        try:
            stream_name = await self._ensure_stream(event.type)
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            ack = await self._js.publish(event.type, data, stream=stream_name)
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True
        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def subscribe_to_events(
        self, pattern: str, handler: Callable, durable: Optional[str] = None
    ) -> Optional[str]:
        """
        Subscribe to events with a pattern using a durable pull consumer.

        Args:
            pattern: Subject pattern to subscribe to (e.g., "payment.completed")
            handler: Async callback receiving an Event
            durable: Optional durable name for the consumer
        """
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return None

        try:
            await self._ensure_stream(pattern)
            subject = pattern.replace("*", ">") if pattern.endswith("*") else pattern
            consumer_name = durable or f"{self.service_name}-{pattern.replace('.', '-').replace('*', 'all')}"
            subscription = await self._js.pull_subscribe(subject, durable=consumer_name)

            self._subscriptions[pattern] = True
            task = asyncio.create_task(self._consumer_loop(pattern, subscription, handler))
            self._subscription_tasks.append(task)

            logger.info(f"Subscribed to {pattern} (JetStream consumer {consumer_name})")
            return consumer_name
        except Exception as e:
            logger.error(f"Error subscribing to events: {e}")
            return None

    async def _consumer_loop(self, pattern: str, subscription, handler: Callable):
        try:
            while self._subscriptions.get(pattern, False):
                try:
                    messages = await subscription.fetch(batch=10, timeout=1)
                except NATSTimeoutError:
                    continue
                except NotFoundError as e:
                    logger.warning(f"Consumer for {pattern} missing (will retry): {e}")
                    await asyncio.sleep(5)
                    continue

                for msg in messages:
                    try:
                        data = json.loads(msg.data.decode())
                        if 'type' in data and 'source' in data and 'data' in data:
                            event = Event.from_dict(data)
                        else:
                            event = Event(event_type=msg.subject, source="unknown", data=data, subject=msg.subject)
                        await handler(event)
                        await msg.ack()
                    except Exception as msg_e:
                        logger.error(f"Error processing message on {msg.subject}: {msg_e}")
                        await msg.nak()
        except asyncio.CancelledError:
            raise
        finally:
            self._subscriptions[pattern] = False
            logger.info(f"JetStream consumer stopped: {pattern}")

    async def close(self):
        """Drain subscriptions and close the NATS connection"""
        for pattern in list(self._subscriptions.keys()):
            self._subscriptions[pattern] = False

        for task in self._subscription_tasks:
            if not task.done():
                task.cancel()
        if self._subscription_tasks:
            await asyncio.gather(*self._subscription_tasks, return_exceptions=True)
        self._subscription_tasks = []

        if self._nc is not None:
            await self._nc.drain()
            self._nc = None
            self._js = None

        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._nc is not None and self._nc.is_connected


# Singleton instance
_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(service_name: str, nats_url: str = "nats://localhost:4222") -> NATSEventBus:
    """
    Get or create event bus instance.

    Args:
        service_name: Name of the service using the event bus
        nats_url: NATS server URL

    Returns:
        NATSEventBus instance
    """
    global _event_bus

    if _event_bus is None:
        bus = NATSEventBus(service_name=service_name, nats_url=nats_url)
        await bus.connect()
        _event_bus = bus

    return _event_bus

