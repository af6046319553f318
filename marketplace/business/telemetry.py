"""Live launcher sessions and the durable usage counters built from them.

Each connection walks Unregistered -> Registered -> Playing <-> Idle and
is dropped on disconnect. Counters only grow; they live in memory and are
flushed to a JSON file by a timer, never on the event path.
"""

__all__ = [
    "ConnectionState",
    "LiveSession",
    "TelemetryAggregator",
    "UNKNOWN",
    "ANONYMOUS",
    "AGGREGATOR",
]

import datetime
import enum
import json
import logging
import os
import pathlib
import tempfile
import threading
import typing
import pydantic
from typing import Optional as Opt
from ..schemas.stats import PersistentStats, migrate_stats, SCHEMA_VERSION
from ..utils.datetime_ import get_datetime, get_date_key


logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
ANONYMOUS = "Anonymous"

ConnectionID: typing.TypeAlias = str


def _or_default(default: typing.Any) -> pydantic.WrapValidator:
    """Swap a missing, empty or malformed value for `default`."""
    def validate(value, handler):
        if value is None or value == "":
            return default
        try:
            return handler(value)
        except pydantic.ValidationError:
            return default
    return pydantic.WrapValidator(validate)


OptText = typing.Annotated[Opt[str], _or_default(None)]
Flag = typing.Annotated[bool, _or_default(False)]
Mode = typing.Annotated[typing.Literal["client", "server"], _or_default("client")]


class _Event(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    @classmethod
    def parse(cls, data: typing.Any) -> typing.Self:
        return cls.model_validate(data if isinstance(data, dict) else {})


class RegisterEvent(_Event):
    version: OptText = None
    os: OptText = None
    username: OptText = None
    uuid: OptText = None


class StatusEvent(_Event):
    is_playing: Flag = pydantic.Field(default=False, alias="isPlaying")
    instance: OptText = None
    mode: Mode = "client"
    software: OptText = None
    game_version: OptText = pydantic.Field(default=None, alias="gameVersion")


class CreationEvent(_Event):
    software: OptText = None
    version: OptText = None
    mode: Mode = "client"


class DownloadEvent(_Event):
    model_config = pydantic.ConfigDict(extra="allow", coerce_numbers_to_str=True)

    type: OptText = None
    name: OptText = None
    id: OptText = None
    username: OptText = None


class ConnectionState(enum.Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    PLAYING = "playing"
    IDLE = "idle"


class LiveSession(pydantic.BaseModel):
    connection_id: ConnectionID
    state: ConnectionState = ConnectionState.UNREGISTERED
    version: str = UNKNOWN
    os: str = UNKNOWN
    username: str = ANONYMOUS
    uuid: Opt[str] = None
    is_playing: bool = False
    instance: Opt[str] = None
    version_counted: bool = False
    started_at: datetime.datetime = pydantic.Field(default_factory=get_datetime)

    @property
    def is_known(self) -> bool:
        """Counted as an active user once it told us its version."""
        return self.version != UNKNOWN


def _bump(counter: dict[str, int], key: str) -> None:
    counter[key] = counter.get(key, 0) + 1


class TelemetryAggregator:
    """Owns the live-session table and the durable counters.

    Every read-modify-write happens under one lock: flushes run in a
    worker thread and HTTP handlers record downloads next to the socket
    events. Readers only ever get copies.
    """

    def __init__(self, path: Opt[str | os.PathLike] = None):
        """
        :param path: Where counters are persisted; None keeps them in memory.
        """
        self._path = pathlib.Path(path) if path else None
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._sessions: dict[ConnectionID, LiveSession] = {}
        self._stats = PersistentStats()
        self._dirty = False

    # persistence

    def load(self) -> None:
        """Read the counters file, upgrading older layouts.

        A missing file is created; an unreadable one is moved aside and
        counting starts over.
        """
        if self._path is None:
            return
        if not self._path.exists():
            with self._lock:
                self._dirty = True
            self.flush()
            return

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.exception("Failed to load analytics from %s", self._path)
            self._set_aside_corrupt()
            return

        try:
            stats = migrate_stats(raw)
        except (ValueError, TypeError, KeyError, OverflowError):
            logger.exception("Failed to migrate analytics from %s", self._path)
            self._set_aside_corrupt()
            return

        with self._lock:
            self._stats = stats
            outdated = not isinstance(raw, dict) or raw.get("schemaVersion") != SCHEMA_VERSION
            self._dirty = self._dirty or outdated
        logger.info("Analytics loaded from %s", self._path)

    def _set_aside_corrupt(self) -> None:
        assert self._path is not None
        target = self._path.with_name(
            f"{self._path.name}.corrupt-{get_datetime().strftime('%Y%m%d%H%M%S')}"
        )
        try:
            os.replace(self._path, target)
            logger.warning("Unreadable analytics moved to %s", target)
        except OSError:
            logger.exception("Could not move unreadable analytics aside")

    def flush(self) -> bool:
        """Write the counters if they changed since the last flush.

        Failures are logged and the counters stay dirty, so the next call
        retries.

        :return: Whether the file was written.
        """
        if self._path is None:
            return False
        with self._flush_lock:
            with self._lock:
                if not self._dirty:
                    return False
                document = self._stats.to_document()
                self._dirty = False
            try:
                self._write(document)
            except OSError:
                logger.exception("Error saving analytics to %s", self._path)
                with self._lock:
                    self._dirty = True
                return False
        logger.debug("Analytics flushed to %s", self._path)
        return True

    def _write(self, document: dict) -> None:
        assert self._path is not None
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                json.dump(document, tmp, indent=2)
            os.replace(tmp_name, self._path)
        except OSError:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    @property
    def dirty(self) -> bool:
        return self._dirty

    # connection events

    def connect(self, connection_id: ConnectionID) -> None:
        with self._lock:
            self._sessions[connection_id] = LiveSession(connection_id=connection_id)

    def register(self, connection_id: ConnectionID, data: typing.Any) -> None:
        """Identify the launcher.

        Its version is counted once per connection, on the first register
        that carries one, whatever the play state is by then.
        """
        event = RegisterEvent.parse(data)
        with self._lock:
            session = self._sessions.get(connection_id)
            if session is None:
                logger.debug("register from unknown connection %s ignored", connection_id)
                return
            session.version = event.version or UNKNOWN
            session.os = event.os or UNKNOWN
            session.username = event.username or ANONYMOUS
            session.uuid = event.uuid
            if session.state == ConnectionState.UNREGISTERED:
                session.state = ConnectionState.REGISTERED
            if event.version and not session.version_counted:
                session.version_counted = True
                _bump(self._stats.client_versions, event.version)
                self._dirty = True

    def update_status(self, connection_id: ConnectionID, data: typing.Any) -> bool:
        """Toggle playing/idle.

        Entering Playing from any other state counts as a launch for today,
        plus the software and game version it was launched with.

        :return: Whether a launch was counted.
        """
        event = StatusEvent.parse(data)
        with self._lock:
            session = self._sessions.get(connection_id)
            if session is None:
                logger.debug("update-status from unknown connection %s ignored", connection_id)
                return False

            launched = event.is_playing and session.state != ConnectionState.PLAYING
            if launched:
                _bump(self._stats.launches_per_day, get_date_key())
                if event.software:
                    _bump(getattr(self._stats.software, event.mode), event.software)
                if event.game_version:
                    _bump(getattr(self._stats.game_versions, event.mode), event.game_version)
                self._dirty = True

            session.is_playing = event.is_playing
            session.instance = event.instance
            session.state = ConnectionState.PLAYING if event.is_playing else ConnectionState.IDLE
        return launched

    def track_creation(self, connection_id: ConnectionID, data: typing.Any) -> None:
        """Count a newly created instance or server."""
        event = CreationEvent.parse(data)
        logger.debug("Track creation (%s): %s %s", event.mode, event.software, event.version)
        with self._lock:
            if event.software:
                _bump(getattr(self._stats.software, event.mode), event.software)
            if event.version:
                _bump(getattr(self._stats.game_versions, event.mode), event.version)
            self._dirty = self._dirty or bool(event.software or event.version)

    def track_download(self, connection_id: ConnectionID, data: typing.Any) -> dict:
        """Count a download reported by a launcher, whatever its state.

        :return: The event as admins see it, with the downloader's name.
        """
        event = DownloadEvent.parse(data)
        with self._lock:
            session = self._sessions.get(connection_id)
            username = event.username or (session.username if session else ANONYMOUS)
        return {
            **event.model_dump(exclude_none=True),
            **self.record_download(event.type or "mod", event.name or event.id or UNKNOWN, username),
        }

    def record_download(self, category: str, name: str, username: str = ANONYMOUS) -> dict:
        with self._lock:
            _bump(self._stats.downloads.setdefault(category, {}), name)
            self._dirty = True
        return {"type": category, "name": name, "username": username}

    def disconnect(self, connection_id: ConnectionID) -> None:
        """Drop the live session; counters keep what it contributed."""
        with self._lock:
            self._sessions.pop(connection_id, None)

    def reset(self) -> None:
        """Empty every durable counter."""
        with self._lock:
            self._stats = PersistentStats()
            self._dirty = True
        logger.warning("Analytics counters reset")

    # reads

    def sessions(self) -> dict[ConnectionID, LiveSession]:
        with self._lock:
            return {cid: session.model_copy() for cid, session in self._sessions.items()}

    def live_stats(self) -> dict:
        active_users = 0
        playing_users = 0
        versions: dict[str, int] = {}
        playing_instances: dict[str, int] = {}
        with self._lock:
            for session in self._sessions.values():
                if not session.is_known:
                    continue
                active_users += 1
                _bump(versions, session.version)
                if session.is_playing:
                    playing_users += 1
                    if session.instance:
                        _bump(playing_instances, session.instance)
        return {
            "activeUsers": active_users,
            "playingUsers": playing_users,
            "versions": versions,
            "playingInstances": playing_instances,
        }

    def persistent(self) -> dict:
        with self._lock:
            return self._stats.to_wire()

    def snapshot(self) -> dict:
        """Everything admins see, as one consistent push."""
        return {"live": self.live_stats(), "persistent": self.persistent()}


# configs
ANALYTICS_FILE = os.getenv('ANALYTICS_FILE', 'analytics.json')

AGGREGATOR = TelemetryAggregator(ANALYTICS_FILE)
