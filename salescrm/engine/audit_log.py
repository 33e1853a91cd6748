"""
Audit Log - Interaction events for contact mutations.

build_event() is a pure function: it stamps the timestamp and picks the
human-readable description for the event kind. AuditLog.append() writes the
event through the Interaction store. There is deliberately no update or delete
path: audit events are immutable once written.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from salescrm.errors import ValidationError
from salescrm.models import (
    INTERACTION_MODIFICATION, INTERACTION_NOTE, INTERACTION_TYPES, Interaction, utcnow,
)
from salescrm.store.base import RecordStore

logger = logging.getLogger(__name__)

CREATED_DESCRIPTION = "Contact créé"
STAGE_CHANGE_TEMPLATE = 'Statut changé de "{previous}" à "{new}"'
MOVE_TEMPLATE = 'Contact déplacé de "{previous}" vers "{new}"'


def describe(kind: str, previous_stage: Optional[str] = None, new_stage: Optional[str] = None) -> str:
    """Default description for an event kind."""
    if kind == INTERACTION_MODIFICATION:
        return STAGE_CHANGE_TEMPLATE.format(previous=previous_stage, new=new_stage)
    if kind == INTERACTION_NOTE:
        return CREATED_DESCRIPTION
    return kind


def build_event(
    contact_id,
    kind: str,
    description: Optional[str] = None,
    previous_stage: Optional[str] = None,
    new_stage: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build the Interaction payload for one audit event.

    Stage fields are only included for stage-change events (both given).
    Raises ValidationError for an unknown kind or a missing contact id.
    """
    if kind not in INTERACTION_TYPES:
        raise ValidationError(f"Unknown interaction type {kind!r}; expected one of {INTERACTION_TYPES}")
    if contact_id is None:
        raise ValidationError("An audit event needs a contact_id")

    event = {
        'contact_id': contact_id,
        'type': kind,
        'description': description or describe(kind, previous_stage, new_stage),
        'date_interaction': timestamp or utcnow(),
    }
    if previous_stage is not None or new_stage is not None:
        event['statut_precedent'] = previous_stage
        event['statut_actuel'] = new_stage
    return event


class AuditLog:
    """Append-only writer of Interaction events."""

    def __init__(self, store: RecordStore):
        self._store = store

    async def append(self, event: Dict[str, Any]) -> Interaction:
        interaction = await self._store.create(event)
        logger.info(
            f"Logged {interaction.type} interaction {interaction.id} for contact {interaction.contact_id}"
        )
        return interaction

    async def history(self, contact_id, limit: Optional[int] = None):
        """Events for one contact, newest first."""
        return await self._store.filter({'contact_id': contact_id}, '-date_interaction', limit)
