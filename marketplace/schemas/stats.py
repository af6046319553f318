"""Durable telemetry counters and the migration of their on-disk document.
"""

__all__ = [
    "SCHEMA_VERSION",
    "DOWNLOAD_CATEGORIES",
    "ModeCounters",
    "PersistentStats",
    "migrate_stats",
]

import logging
import math
import typing
import pydantic


logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
DOWNLOAD_CATEGORIES = ("mod", "resourcepack", "shader", "modpack")

Counter: typing.TypeAlias = dict[str, int]


class ModeCounters(pydantic.BaseModel):
    client: Counter = pydantic.Field(default_factory=dict)
    server: Counter = pydantic.Field(default_factory=dict)


class PersistentStats(pydantic.BaseModel):
    """Counters that only ever grow, until an admin resets them."""

    model_config = pydantic.ConfigDict(populate_by_name=True)

    downloads: dict[str, Counter] = pydantic.Field(
        default_factory=lambda: {category: {} for category in DOWNLOAD_CATEGORIES}
    )
    """category -> name -> count"""
    launches_per_day: Counter = pydantic.Field(default_factory=dict, alias="launchesPerDay")
    """ISO date -> count"""
    client_versions: Counter = pydantic.Field(default_factory=dict, alias="clientVersions")
    software: ModeCounters = pydantic.Field(default_factory=ModeCounters)
    game_versions: ModeCounters = pydantic.Field(default_factory=ModeCounters, alias="gameVersions")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)

    def to_document(self) -> dict:
        return {"schemaVersion": SCHEMA_VERSION, **self.to_wire()}


def _counter(value: typing.Any) -> Counter:
    if not isinstance(value, dict):
        return {}
    counter: Counter = {}
    for key, count in value.items():
        if isinstance(count, bool) or not isinstance(count, (int, float)):
            continue
        if isinstance(count, float) and not math.isfinite(count):
            continue
        counter[str(key)] = int(count)
    return counter


def _mode_counters(value: typing.Any) -> dict:
    value = value if isinstance(value, dict) else {}
    return {"client": _counter(value.get("client")), "server": _counter(value.get("server"))}


def _from_flat(document: dict) -> dict:
    """v0 -> v1: the flat layout only tracked mod downloads."""
    return {
        "downloads": {"mod": document.get("totalDownloads") or {}},
        "launchesPerDay": document.get("launchesPerDay") or {},
        "clientVersions": document.get("clientVersions") or {},
    }


def _fill_defaults(document: dict) -> dict:
    """v1 -> v2: every expected key present, unknown categories kept."""
    raw_downloads = document.get("downloads")
    raw_downloads = raw_downloads if isinstance(raw_downloads, dict) else {}
    downloads = {category: {} for category in DOWNLOAD_CATEGORIES}
    for category, counter in raw_downloads.items():
        downloads[str(category)] = _counter(counter)

    return {
        "downloads": downloads,
        "launchesPerDay": _counter(document.get("launchesPerDay")),
        "clientVersions": _counter(document.get("clientVersions")),
        "software": _mode_counters(document.get("software")),
        "gameVersions": _mode_counters(document.get("gameVersions")),
    }


MIGRATIONS: dict[int, typing.Callable[[dict], dict]] = {
    0: _from_flat,
    1: _fill_defaults,
}
"""from version -> step to the next version"""


def _detect_version(document: dict) -> int:
    version = document.get("schemaVersion")
    if isinstance(version, int) and not isinstance(version, bool) and version >= 0:
        return version
    if "totalDownloads" in document and "downloads" not in document:
        return 0
    return 1


def migrate_stats(raw: typing.Any) -> PersistentStats:
    """Bring a stored counters document up to the current layout.

    Missing keys default to their empty shape; nothing present is dropped.
    """
    document = raw if isinstance(raw, dict) else {}
    version = _detect_version(document)
    if version > SCHEMA_VERSION:
        logger.warning(
            "Stats document has schema version %s, newer than %s; reading it as current.",
            version, SCHEMA_VERSION,
        )
        version = SCHEMA_VERSION

    while version < SCHEMA_VERSION:
        document = MIGRATIONS[version](document)
        version += 1

    # The current layout still goes through the defaults so hand-edited files load.
    return PersistentStats.model_validate(_fill_defaults(document))
