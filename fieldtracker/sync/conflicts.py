"""
Conflict resolution for records modified both on a device and on the server.

Resolution is whole-record: one side is kept in full, fields are never
merged. Both the server (while applying a push) and the client (while
applying the push verdict) call ``resolve`` with the same inputs, so they
reach the same decision independently.
"""
from dataclasses import dataclass
import enum
from typing import Any, Mapping, Optional

from fieldtracker.sync.timeutils import parse_datetime


class ConflictStrategy(str, enum.Enum):
    LATEST_WINS = "latest_wins"
    CLIENT_WINS = "client_wins"
    SERVER_WINS = "server_wins"
    MANUAL_REVIEW = "manual_review"


class ConflictType(str, enum.Enum):
    UPDATE_CONFLICT = "update_conflict"
    TIME_OVERLAP = "time_overlap"
    MISSING_REFERENCE = "missing_reference"


class ConflictSeverity(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Winner(str, enum.Enum):
    LOCAL = "local"
    SERVER = "server"


@dataclass(frozen=True)
class Resolution:
    resolved: Mapping[str, Any]
    needs_review: bool
    winner: Winner


def _timestamp(record: Mapping[str, Any], key: str):
    try:
        return parse_datetime(record.get(key))
    except (TypeError, ValueError):
        return None


def resolve(
    local: Mapping[str, Any],
    server: Mapping[str, Any],
    strategy: ConflictStrategy = ConflictStrategy.LATEST_WINS,
    updated_at_key: str = "updatedAt",
) -> Resolution:
    """
    Decide which version of a record survives.

    latest_wins keeps the record with the later ``updatedAt``; a tie or a
    missing/unparseable timestamp on either side defers to manual review.
    Whenever review is needed the server record is returned as the
    provisional value.
    """
    strategy = ConflictStrategy(strategy)

    if strategy == ConflictStrategy.CLIENT_WINS:
        return Resolution(resolved=local, needs_review=False, winner=Winner.LOCAL)

    if strategy == ConflictStrategy.SERVER_WINS:
        return Resolution(resolved=server, needs_review=False, winner=Winner.SERVER)

    if strategy == ConflictStrategy.LATEST_WINS:
        local_time = _timestamp(local, updated_at_key)
        server_time = _timestamp(server, updated_at_key)
        if local_time is not None and server_time is not None and local_time != server_time:
            if local_time > server_time:
                return Resolution(resolved=local, needs_review=False, winner=Winner.LOCAL)
            return Resolution(resolved=server, needs_review=False, winner=Winner.SERVER)

    return Resolution(resolved=server, needs_review=True, winner=Winner.SERVER)


def strategy_for(conflict_type: ConflictType, default: ConflictStrategy) -> ConflictStrategy:
    """
    Double-bookings involve two different entries, so keeping one "whole
    record" would silently drop the other; they always go to review.
    """
    if ConflictType(conflict_type) == ConflictType.TIME_OVERLAP:
        return ConflictStrategy.MANUAL_REVIEW
    return ConflictStrategy(default)


def classify_severity(conflict_type: ConflictType, entity_type: Optional[str] = None) -> ConflictSeverity:
    """Triage label for operators; not used by the resolution algorithm."""
    conflict_type = ConflictType(conflict_type)
    if conflict_type == ConflictType.TIME_OVERLAP:
        return ConflictSeverity.HIGH
    if conflict_type == ConflictType.UPDATE_CONFLICT:
        return ConflictSeverity.MEDIUM if entity_type in (None, "time_entry") else ConflictSeverity.LOW
    return ConflictSeverity.LOW
