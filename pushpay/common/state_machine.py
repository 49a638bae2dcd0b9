"""Payment record status transitions.

Reconciliation follows the provider, so an unexpected transition is logged
rather than refused.
"""

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "initiated": {"pending", "completed", "failed"},
    "pending": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}


def is_allowed_transition(current: str, new: str) -> bool:
    # Replayed webhooks re-apply the same status.
    if current == new:
        return True
    return new in ALLOWED_TRANSITIONS.get(current, set())
