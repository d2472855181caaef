"""
Canonical event kind strings written by the core services.
"""

EVENT_CAPTURED = "captured"
EVENT_STATE_CHANGE = "state_change"
EVENT_CONTENT_UPDATED = "content_updated"
EVENT_ANNOTATED = "annotated"

__all__ = [
    "EVENT_CAPTURED",
    "EVENT_STATE_CHANGE",
    "EVENT_CONTENT_UPDATED",
    "EVENT_ANNOTATED",
]
