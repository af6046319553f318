"""Realtime gateway for launchers and the admin dashboard.

Launchers report sessions over `/ws`; admins subscribe on the same socket
and get a full `{live, persistent}` snapshot pushed after every change.
"""

__all__ = [
    "TELEMETRY_ROUTER",
    "dispatch_event",
    "publish_live_update",
    "start_telemetry",
    "stop_telemetry",
]

import asyncio
import json
import logging
import os
import secrets
import typing
import uuid
import fastapi
import fastapi.concurrency
import pydantic
from ..errors import Unauthorized
from ..task import scheduler
from . import broadcast, telemetry
from .extension import ExtensionManager


logger = logging.getLogger(__name__)

# configs
ADMIN_PASSWORD = os.getenv('ADMIN_PASSWORD', '')
FLUSH_SECONDS = int(os.getenv('TELEMETRY_FLUSH_SECONDS', '30'))
BROADCAST_SECONDS = int(os.getenv('TELEMETRY_BROADCAST_SECONDS', '10'))
OUTBOX_SIZE = 100

WEB_GUEST = "Web Guest"


def check_admin_password(password: typing.Any) -> bool:
    if not ADMIN_PASSWORD or not isinstance(password, str):
        return False
    return secrets.compare_digest(password.encode(), ADMIN_PASSWORD.encode())


def flush_analytics() -> None:
    telemetry.AGGREGATOR.flush()


def schedule_flush() -> None:
    """Flush soon in a worker thread; bursts collapse into one job."""
    if scheduler.running:
        scheduler.add_job(
            flush_analytics, id="telemetry.flush.eager", replace_existing=True,
        )


def publish_live_update() -> None:
    if len(broadcast.HUB):
        broadcast.HUB.publish("live-update", telemetry.AGGREGATOR.snapshot())


async def broadcast_live_update() -> None:
    publish_live_update()


def start_telemetry() -> None:
    """Load counters and register the flush and broadcast timers."""
    telemetry.AGGREGATOR.load()
    if not ADMIN_PASSWORD:
        logger.warning("ADMIN_PASSWORD is not set; admin analytics are disabled.")
    scheduler.add_job(
        flush_analytics, "interval", seconds=FLUSH_SECONDS,
        id="telemetry.flush", replace_existing=True,
    )
    scheduler.add_job(
        broadcast_live_update, "interval", seconds=BROADCAST_SECONDS,
        id="telemetry.broadcast", replace_existing=True,
    )


def stop_telemetry() -> None:
    flush_analytics()


def dispatch_event(
    connection_id: str, outbox: asyncio.Queue, event: typing.Any, data: typing.Any,
) -> None:
    """Apply one client event. Never raises."""
    aggregator, hub = telemetry.AGGREGATOR, broadcast.HUB
    try:
        if event == "register":
            aggregator.register(connection_id, data)
        elif event == "update-status":
            if aggregator.update_status(connection_id, data):
                schedule_flush()
        elif event == "track-creation":
            aggregator.track_creation(connection_id, data)
            schedule_flush()
        elif event == "track-download":
            download = aggregator.track_download(connection_id, data)
            schedule_flush()
            hub.publish("new-download", download)
        elif event == "admin-subscribe":
            password = data.get("password") if isinstance(data, dict) else data
            if check_admin_password(password):
                hub.subscribe(outbox)
                hub.send(outbox, hub.message("init-stats", aggregator.snapshot()))
            else:
                logger.warning("Rejected admin-subscribe on %s", connection_id)
                hub.send(outbox, hub.message("error", {"message": "Invalid password"}))
            return
        else:
            logger.debug("Unknown event %r from %s ignored", event, connection_id)
            return
    except Exception:
        logger.exception("Telemetry event %r from %s failed", event, connection_id)
        return
    publish_live_update()


def _decode(frame: typing.Any) -> tuple[typing.Any, typing.Any] | None:
    if frame is None:
        return None
    try:
        message = json.loads(frame)
    except ValueError:
        return None
    if not isinstance(message, dict):
        return None
    return message.get("event"), message.get("data")


async def _pump(websocket: fastapi.WebSocket, outbox: asyncio.Queue) -> None:
    # the only writer of this socket
    while True:
        message = await outbox.get()
        try:
            await websocket.send_json(message)
        except Exception:
            logger.debug("Socket closed while sending %s", message.get("event"))
            return


TELEMETRY_ROUTER = fastapi.APIRouter(tags=["telemetry"])


@TELEMETRY_ROUTER.websocket("/ws")
async def telemetry_socket(websocket: fastapi.WebSocket):
    await websocket.accept()
    connection_id = uuid.uuid4().hex
    outbox: asyncio.Queue = asyncio.Queue(maxsize=OUTBOX_SIZE)
    writer = asyncio.create_task(_pump(websocket, outbox))
    telemetry.AGGREGATOR.connect(connection_id)
    logger.debug("Client connected: %s", connection_id)
    publish_live_update()

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            decoded = _decode(frame.get("text") or frame.get("bytes"))
            if decoded is None:
                logger.debug("Undecodable frame from %s ignored", connection_id)
                continue
            dispatch_event(connection_id, outbox, *decoded)
    finally:
        broadcast.HUB.unsubscribe(outbox)
        telemetry.AGGREGATOR.disconnect(connection_id)
        writer.cancel()
        logger.debug("Client disconnected: %s", connection_id)
        publish_live_update()


class PasswordBody(pydantic.BaseModel):
    password: str = ""


@TELEMETRY_ROUTER.post("/api/extensions/{extension_id}/download")
async def download_extension(extension_id: int):
    category, name = await fastapi.concurrency.run_in_threadpool(
        ExtensionManager.record_download, extension_id
    )
    download = telemetry.AGGREGATOR.record_download(category, name, WEB_GUEST)
    schedule_flush()
    broadcast.HUB.publish("new-download", download)
    publish_live_update()
    return {"success": True}


@TELEMETRY_ROUTER.post("/api/admin/analytics")
def get_analytics(body: PasswordBody):
    if not check_admin_password(body.password):
        raise Unauthorized("Invalid password")
    return telemetry.AGGREGATOR.snapshot()


@TELEMETRY_ROUTER.post("/api/admin/reset-stats")
async def reset_stats(body: PasswordBody):
    if not check_admin_password(body.password):
        raise Unauthorized("Invalid password")
    telemetry.AGGREGATOR.reset()
    schedule_flush()
    broadcast.HUB.publish("init-stats", telemetry.AGGREGATOR.snapshot())
    return {"success": True}
