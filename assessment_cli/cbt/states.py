from typing import Dict, FrozenSet, get_args

from assessment_cli.models import ImportStatus

STATUSES = get_args(ImportStatus)

# rejected and synced are terminal
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"approved", "rejected"}),
    "approved": frozenset({"synced"}),
    "rejected": frozenset(),
    "synced": frozenset(),
}

# Timestamp column stamped when a row enters the status
STATUS_TIMESTAMPS: Dict[str, str] = {
    "approved": "approved_at",
    "rejected": "rejected_at",
    "synced": "synced_at",
}


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())
