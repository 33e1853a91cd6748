"""
Stage Machine - Contact lifecycle operations
Creates, updates and deletes contacts through the Contact store and writes the
matching audit events through the AuditLog. Any pipeline stage is reachable
from any other; the pipeline is advisory, not enforced.

Ordering contract: the contact write is awaited before the audit write is
issued. When the audit write fails the contact mutation still stands; the
failure is logged, emitted as EVENT_AUDIT_FAILED and surfaced as a
PartialAuditFailure warning.
"""

import logging
import warnings
from datetime import datetime
from numbers import Number
from typing import Any, Dict, List, Optional

from salescrm.bus.events import (
    bus, EventBus, EVENT_CONTACT_CREATED, EVENT_CONTACT_UPDATED, EVENT_CONTACT_DELETED,
    EVENT_STAGE_CHANGED, EVENT_INTERACTION_LOGGED, EVENT_AUDIT_FAILED,
)
from salescrm.engine.audit_log import MOVE_TEMPLATE, AuditLog, build_event
from salescrm.errors import CrmError, NotFoundError, PartialAuditFailure, ValidationError
from salescrm.models import (
    Contact, Interaction, DEFAULT_STAGE, STAGE_IDS, SOURCES, TEMPERATURES,
    INTERACTION_MODIFICATION, INTERACTION_NOTE, INTERACTION_TYPES, field_names, utcnow,
)
from salescrm.store.base import MANAGED_FIELDS, RecordStore

logger = logging.getLogger(__name__)

# Allowlist for contact writes
_CONTACT_COLUMNS = field_names(Contact) - MANAGED_FIELDS

# Kinds a user may log by hand; Modification is reserved for stage changes
MANUAL_INTERACTION_TYPES = [t for t in INTERACTION_TYPES if t != INTERACTION_MODIFICATION]


def _validate_columns(updates: Dict[str, Any], allowed: set, entity: str) -> None:
    """Raise ValidationError if any key in updates is not an allowed field name."""
    invalid = set(updates.keys()) - allowed
    if invalid:
        raise ValidationError(f"Invalid {entity} fields: {sorted(invalid)}")


def validate_contact_fields(values: Dict[str, Any]) -> None:
    """Field names plus the enum / range checks that keep a contact well-formed."""
    _validate_columns(values, _CONTACT_COLUMNS, 'contact')

    if 'statut' in values and values['statut'] not in STAGE_IDS:
        raise ValidationError(f"Unknown pipeline stage {values['statut']!r}; expected one of {STAGE_IDS}")

    temperature = values.get('temperature')
    if temperature is not None and temperature not in TEMPERATURES:
        raise ValidationError(f"Unknown temperature {temperature!r}; expected one of {TEMPERATURES}")

    source = values.get('source')
    if source is not None and source not in SOURCES:
        raise ValidationError(f"Unknown source {source!r}; expected one of {SOURCES}")

    value = values.get('valeur_estimee')
    if value is not None:
        if isinstance(value, bool) or not isinstance(value, Number):
            raise ValidationError(f"valeur_estimee must be a number, got {value!r}")
        if value < 0:
            raise ValidationError(f"valeur_estimee must be non-negative, got {value!r}")

    if 'tags' in values:
        tags = values['tags']
        if tags is None or isinstance(tags, str) or not all(isinstance(t, str) for t in tags):
            raise ValidationError("tags must be a list of strings, use [] for no tags")


class StageMachine:
    """
    Contact lifecycle engine.

    Args:
        contacts: Contact store
        audit_log: AuditLog writing Interaction events
        event_bus: bus receiving lifecycle events (module singleton by default)
        clock: callable returning the current aware datetime
    """

    def __init__(self, contacts: RecordStore, audit_log: AuditLog,
                 event_bus: Optional[EventBus] = None, clock=utcnow):
        self._contacts = contacts
        self._audit = audit_log
        self._bus = event_bus if event_bus is not None else bus
        self._clock = clock

    # =========================================================================
    # READS
    # =========================================================================

    async def get_contact(self, contact_id) -> Contact:
        """Current record for contact_id. Raises NotFoundError."""
        found = await self._contacts.filter({'id': contact_id}, limit=1)
        if not found:
            logger.debug(f"get_contact: contact_id={contact_id} not found")
            raise NotFoundError('Contact', contact_id)
        return found[0]

    async def list_contacts(self, sort_key: str = '-updated_date') -> List[Contact]:
        return await self._contacts.list(sort_key)

    async def history(self, contact_id, limit: Optional[int] = None) -> List[Interaction]:
        """Interaction history for a contact, newest first."""
        return await self._audit.history(contact_id, limit)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def create_contact(self, fields: Dict[str, Any]) -> Contact:
        """
        Store a new contact, then log its 'Contact créé' Note.
        The audit event is only attempted once the contact write succeeded.
        """
        values = dict(fields)
        values.setdefault('statut', DEFAULT_STAGE)
        validate_contact_fields(values)

        now = self._clock()
        values['derniere_interaction'] = now

        contact = await self._contacts.create(values)
        logger.info(f"Created contact {contact.id}: {contact.full_name or contact.societe}")
        self._bus.emit(EVENT_CONTACT_CREATED, {'contact_id': contact.id, 'contact': contact})

        await self._write_audit(contact.id, build_event(contact.id, INTERACTION_NOTE, timestamp=now))
        return contact

    async def update_contact(self, contact_id, patch: Dict[str, Any]) -> Contact:
        """
        Apply patch to a contact and stamp derniere_interaction.

        A Modification event is written only when patch carries a statut that
        differs from the current one. Plain attribute edits are not audited.
        """
        return await self._apply_update(contact_id, patch)

    async def move_contact(self, contact_id, stage: str) -> Contact:
        """Stage-transition intent from the pipeline board: only statut changes."""
        return await self._apply_update(contact_id, {'statut': stage}, move_template=MOVE_TEMPLATE)

    async def _apply_update(self, contact_id, patch: Dict[str, Any],
                            move_template: Optional[str] = None) -> Contact:
        values = dict(patch)
        validate_contact_fields(values)

        current = await self.get_contact(contact_id)
        now = self._clock()
        values['derniere_interaction'] = now

        updated = await self._contacts.update(contact_id, values)
        logger.info(f"Updated contact {contact_id}: {sorted(patch)}")
        self._bus.emit(EVENT_CONTACT_UPDATED, {'contact_id': contact_id, 'updates': dict(patch)})

        if 'statut' in patch and patch['statut'] != current.statut:
            previous, new = current.statut, patch['statut']
            logger.info(f"Contact {contact_id} moved {previous!r} -> {new!r}")
            self._bus.emit(EVENT_STAGE_CHANGED, {
                'contact_id': contact_id, 'statut_precedent': previous, 'statut_actuel': new,
            })
            description = move_template.format(previous=previous, new=new) if move_template else None
            event = build_event(
                contact_id, INTERACTION_MODIFICATION, description=description,
                previous_stage=previous, new_stage=new, timestamp=now,
            )
            await self._write_audit(contact_id, event)

        return updated

    async def delete_contact(self, contact_id) -> None:
        """
        Remove a contact. No audit event is written and its Interactions are
        left in place.
        """
        await self._contacts.delete(contact_id)
        logger.info(f"Deleted contact {contact_id}")
        self._bus.emit(EVENT_CONTACT_DELETED, {'contact_id': contact_id})

    async def log_interaction(self, contact_id, kind: str, description: Optional[str] = None,
                              when: Optional[datetime] = None) -> Interaction:
        """
        Log a call, email, meeting or note by hand and touch the contact's
        derniere_interaction. Failures here propagate: the interaction is the
        caller's own record, not a side effect.
        """
        if kind not in MANUAL_INTERACTION_TYPES:
            raise ValidationError(f"Cannot log {kind!r} by hand; expected one of {MANUAL_INTERACTION_TYPES}")

        await self.get_contact(contact_id)
        when = when or self._clock()
        await self._contacts.update(contact_id, {'derniere_interaction': when})

        interaction = await self._audit.append(
            build_event(contact_id, kind, description=description, timestamp=when)
        )
        self._bus.emit(EVENT_INTERACTION_LOGGED, {
            'interaction_id': interaction.id, 'contact_id': contact_id, 'interaction': interaction,
        })
        return interaction

    # =========================================================================
    # AUDIT
    # =========================================================================

    async def _write_audit(self, contact_id, event: Dict[str, Any]) -> Optional[Interaction]:
        try:
            interaction = await self._audit.append(event)
        except CrmError as exc:
            logger.warning(f"Audit write failed for contact {contact_id} ({event['type']}): {exc}")
            self._bus.emit(EVENT_AUDIT_FAILED, {'contact_id': contact_id, 'event': event, 'error': exc})
            warnings.warn(PartialAuditFailure(contact_id, event['type'], exc), stacklevel=3)
            return None

        self._bus.emit(EVENT_INTERACTION_LOGGED, {
            'interaction_id': interaction.id, 'contact_id': contact_id, 'interaction': interaction,
        })
        return interaction
