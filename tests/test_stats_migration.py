from __future__ import annotations

from marketplace.schemas.stats import (
    DOWNLOAD_CATEGORIES,
    SCHEMA_VERSION,
    PersistentStats,
    migrate_stats,
)


def test_legacy_flat_document_folds_into_mod_downloads():
    stats = migrate_stats({"totalDownloads": {"X": 5}})

    wire = stats.to_wire()
    assert wire["downloads"]["mod"] == {"X": 5}
    for category in DOWNLOAD_CATEGORIES[1:]:
        assert wire["downloads"][category] == {}
    assert wire["launchesPerDay"] == {}
    assert wire["clientVersions"] == {}
    assert wire["software"] == {"client": {}, "server": {}}
    assert wire["gameVersions"] == {"client": {}, "server": {}}


def test_legacy_document_keeps_its_other_counters():
    stats = migrate_stats({
        "totalDownloads": {"X": 1},
        "launchesPerDay": {"2024-05-01": 7},
        "clientVersions": {"1.0.0": 3},
    })

    assert stats.launches_per_day == {"2024-05-01": 7}
    assert stats.client_versions == {"1.0.0": 3}


def test_partial_document_gets_defaults_and_keeps_unknown_categories():
    stats = migrate_stats({
        "downloads": {"mod": {"Sodium": 2}, "datapack": {"Terralith": 4}},
        "software": {"client": {"Fabric": 1}},
    })

    assert stats.downloads["datapack"] == {"Terralith": 4}
    assert stats.downloads["mod"] == {"Sodium": 2}
    assert stats.downloads["shader"] == {}
    assert stats.software.client == {"Fabric": 1}
    assert stats.software.server == {}
    assert stats.game_versions.client == {}


def test_garbage_counts_are_dropped():
    stats = migrate_stats({
        "schemaVersion": SCHEMA_VERSION,
        "clientVersions": {"1.0.0": "many", "1.1.0": 2, "1.2.0": True},
        "launchesPerDay": ["not", "a", "mapping"],
    })

    assert stats.client_versions == {"1.1.0": 2}
    assert stats.launches_per_day == {}


def test_non_finite_counts_are_dropped():
    stats = migrate_stats({
        "schemaVersion": SCHEMA_VERSION,
        "clientVersions": {"1.0": float("inf"), "1.1": float("nan"), "1.2": 4.0},
        "downloads": {"mod": {"Sodium": float("-inf")}},
    })

    assert stats.client_versions == {"1.2": 4}
    assert stats.downloads["mod"] == {}


def test_non_mapping_document_yields_empty_stats():
    assert migrate_stats(["unexpected"]) == PersistentStats()
    assert migrate_stats(None) == PersistentStats()


def test_newer_schema_is_read_as_current():
    stats = migrate_stats({"schemaVersion": SCHEMA_VERSION + 1, "clientVersions": {"9.0.0": 1}})

    assert stats.client_versions == {"9.0.0": 1}


def test_negative_schema_is_detected_from_layout():
    current = migrate_stats({"schemaVersion": -1, "clientVersions": {"1.0.0": 2}})
    legacy = migrate_stats({"schemaVersion": -3, "totalDownloads": {"X": 5}})

    assert current.client_versions == {"1.0.0": 2}
    assert legacy.downloads["mod"] == {"X": 5}


def test_document_carries_schema_version_and_wire_names():
    document = PersistentStats().to_document()

    assert document["schemaVersion"] == SCHEMA_VERSION
    assert set(document) == {
        "schemaVersion", "downloads", "launchesPerDay",
        "clientVersions", "software", "gameVersions",
    }
    assert migrate_stats(document) == PersistentStats()
