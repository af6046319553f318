"""Fan-out of admin events to every subscribed socket."""

__all__ = [
    "BroadcastHub",
    "Message",
    "HUB",
]

import asyncio
import logging
import typing


logger = logging.getLogger(__name__)

Message: typing.TypeAlias = dict[str, typing.Any]


class BroadcastHub:
    """Admin subscribers, each represented by the outbox of its socket.

    Only touched from the event loop thread, so publish never interleaves
    with (un)subscribe. A slow subscriber loses its oldest messages
    instead of slowing the others down.
    """

    def __init__(self) -> None:
        self._subscribers: set[asyncio.Queue] = set()

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self, outbox: asyncio.Queue) -> None:
        self._subscribers.add(outbox)
        logger.info("Admin subscribed, %d listening", len(self._subscribers))

    def unsubscribe(self, outbox: asyncio.Queue) -> None:
        if outbox in self._subscribers:
            self._subscribers.discard(outbox)
            logger.info("Admin unsubscribed, %d listening", len(self._subscribers))

    def publish(self, event: str, data: typing.Any) -> int:
        """Queue `event` for every subscriber.

        :return: How many subscribers it was queued for.
        """
        message = self.message(event, data)
        for outbox in tuple(self._subscribers):
            self.send(outbox, message)
        return len(self._subscribers)

    @staticmethod
    def message(event: str, data: typing.Any) -> Message:
        return {"event": event, "data": data}

    @staticmethod
    def send(outbox: asyncio.Queue, message: Message) -> None:
        """Queue without waiting, evicting the oldest message when full."""
        while True:
            try:
                outbox.put_nowait(message)
                return
            except asyncio.QueueFull:
                try:
                    outbox.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                logger.debug("Outbox full, dropped oldest message")


HUB = BroadcastHub()
