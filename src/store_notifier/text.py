"""
Text helpers for rendering store statuses.
"""

import re

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

APP_STORE_STATUS_EMOJI: dict[str, str] = {
    "ready_for_sale": "🎉",
    "in_review": "🚀",
    "waiting_for_review": "🚀",
    "processing": "⚙️",
    "pending_developer_release": "⏳",
    "rejected": "❌",
    "invalid_binary": "❌",
    "metadata_rejected": "❌",
    "developer_rejected": "❌",
    "draft": "📝",
    "prepare_for_submission": "📝",
}

PLAY_STORE_STATUS_EMOJI: dict[str, str] = {
    "completed": "🎉",
    "in_progress": "🚀",
    "draft": "📝",
    "halted": "⏸️",
    "rolled_back": "🔄",
    "status_unspecified": "❓",
}

DEFAULT_EMOJI = "📱"


def normalize_status(status: str) -> str:
    """Reduce ``READY_FOR_SALE``, ``Ready for sale`` and ``inProgress`` to snake case."""
    status = _CAMEL_BOUNDARY.sub("_", status.strip())
    return re.sub(r"[\s_]+", "_", status).lower()


def title_case(status: str) -> str:
    """``PENDING_DEVELOPER_RELEASE`` -> ``Pending Developer Release``."""
    words = [word for word in normalize_status(status).split("_") if word]
    return " ".join(word.capitalize() for word in words)


def status_emoji(platform: str, status: str) -> str:
    """Look up the emoji for a platform status."""
    table = (
        APP_STORE_STATUS_EMOJI if platform == "app-store" else PLAY_STORE_STATUS_EMOJI
    )
    return table.get(normalize_status(status), DEFAULT_EMOJI)
