from fieldtracker.sync.conflicts import (
    ConflictSeverity,
    ConflictStrategy,
    ConflictType,
    Winner,
    classify_severity,
    resolve,
    strategy_for,
)

LOCAL = {"offlineGuid": "a", "notes": "device", "updatedAt": "2026-03-02T10:00:00.000Z"}
SERVER = {"offlineGuid": "a", "notes": "server", "updatedAt": "2026-03-02T09:00:00.000Z"}


def test_latest_wins_keeps_newer_local():
    resolution = resolve(LOCAL, SERVER, ConflictStrategy.LATEST_WINS)
    assert resolution.winner == Winner.LOCAL
    assert resolution.resolved is LOCAL
    assert not resolution.needs_review


def test_latest_wins_keeps_newer_server():
    newer_server = {**SERVER, "updatedAt": "2026-03-02T11:00:00.000Z"}
    resolution = resolve(LOCAL, newer_server)
    assert resolution.winner == Winner.SERVER
    assert resolution.resolved is newer_server
    assert not resolution.needs_review


def test_latest_wins_tie_needs_review():
    tied = {**SERVER, "updatedAt": LOCAL["updatedAt"]}
    resolution = resolve(LOCAL, tied)
    assert resolution.needs_review
    assert resolution.resolved is tied


def test_latest_wins_missing_timestamp_needs_review():
    resolution = resolve({"notes": "x"}, SERVER)
    assert resolution.needs_review
    assert resolution.winner == Winner.SERVER

    resolution = resolve({**LOCAL, "updatedAt": "not a date"}, SERVER)
    assert resolution.needs_review


def test_fixed_strategies_ignore_timestamps():
    assert resolve(LOCAL, SERVER, ConflictStrategy.SERVER_WINS).winner == Winner.SERVER
    older_local = {**LOCAL, "updatedAt": "2026-03-01T00:00:00.000Z"}
    assert resolve(older_local, SERVER, ConflictStrategy.CLIENT_WINS).winner == Winner.LOCAL


def test_manual_review_always_defers_with_server_copy():
    resolution = resolve(LOCAL, SERVER, ConflictStrategy.MANUAL_REVIEW)
    assert resolution.needs_review
    assert resolution.resolved is SERVER


def test_strategy_string_is_accepted():
    assert resolve(LOCAL, SERVER, "client_wins").winner == Winner.LOCAL


def test_overlaps_always_go_to_review():
    assert strategy_for(ConflictType.TIME_OVERLAP, ConflictStrategy.CLIENT_WINS) == ConflictStrategy.MANUAL_REVIEW
    assert strategy_for(ConflictType.UPDATE_CONFLICT, ConflictStrategy.CLIENT_WINS) == ConflictStrategy.CLIENT_WINS


def test_severity_classification():
    assert classify_severity(ConflictType.TIME_OVERLAP) == ConflictSeverity.HIGH
    assert classify_severity(ConflictType.UPDATE_CONFLICT, "time_entry") == ConflictSeverity.MEDIUM
    assert classify_severity(ConflictType.UPDATE_CONFLICT, "break_entry") == ConflictSeverity.LOW
    assert classify_severity(ConflictType.MISSING_REFERENCE) == ConflictSeverity.LOW
