"""Typed view over the project ``settings`` JSON document."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

WITNESS_TRIGGERS = {"previous_item": 1, "2_items_before": 2}


@dataclass(frozen=True)
class QualitySettings:
    witness_notification_enabled: bool = True
    witness_notification_trigger: str = "previous_item"
    witness_client_email: str | None = None
    witness_client_name: str = "Client Representative"
    require_subcontractor_verification: bool = False
    hp_recipients: list[dict[str, Any]] = field(default_factory=list)

    @property
    def witness_lookahead(self) -> int:
        return WITNESS_TRIGGERS.get(self.witness_notification_trigger, 1)


def load_quality_settings(project: Any) -> QualitySettings:
    raw = getattr(project, "settings", None) or {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Project %s has unreadable settings, using defaults", getattr(project, "id", None))
            raw = {}
    if not isinstance(raw, dict):
        raw = {}

    recipients = []
    for entry in raw.get("hpRecipients") or []:
        if isinstance(entry, dict) and entry.get("email"):
            recipients.append({"email": entry["email"], "name": entry.get("name")})

    return QualitySettings(
        witness_notification_enabled=raw.get("witnessPointNotificationEnabled") is not False,
        witness_notification_trigger=raw.get("witnessPointNotificationTrigger") or "previous_item",
        witness_client_email=raw.get("witnessPointClientEmail") or None,
        witness_client_name=raw.get("witnessPointClientName") or "Client Representative",
        require_subcontractor_verification=bool(raw.get("requireSubcontractorVerification", False)),
        hp_recipients=recipients,
    )
