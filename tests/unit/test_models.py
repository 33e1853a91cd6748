"""
Unit tests for data models (salescrm/models/__init__.py).
Pure Python, no store, no mocking required.
"""

from dataclasses import FrozenInstanceError
from datetime import datetime, timezone

import pytest
from salescrm.models import (
    ALL, Column, Contact, FilterState, Interaction, Notification, User,
    DEFAULT_STAGE, LOST_STAGE, PIPELINE_STAGES, STAGE_IDS, STAGE_NAMES,
    INTERACTION_MODIFICATION, INTERACTION_NOTE, INTERACTION_TYPES,
    field_names, utcnow,
)


# ---------------------------------------------------------------------------
# Pipeline constants
# ---------------------------------------------------------------------------

def test_seven_stages_in_pipeline_order():
    assert STAGE_IDS == [
        'Prospect', 'Contacté', 'Qualifié', 'Proposition', 'Négociation', 'Client', 'Perdu',
    ]


def test_stage_names_cover_every_stage():
    assert set(STAGE_NAMES) == set(STAGE_IDS)
    assert len(PIPELINE_STAGES) == 7


def test_default_and_lost_stages_are_pipeline_stages():
    assert DEFAULT_STAGE == STAGE_IDS[0]
    assert LOST_STAGE == STAGE_IDS[-1]


def test_audit_kinds_are_interaction_types():
    assert INTERACTION_NOTE in INTERACTION_TYPES
    assert INTERACTION_MODIFICATION in INTERACTION_TYPES


# ---------------------------------------------------------------------------
# Contact
# ---------------------------------------------------------------------------

def test_contact_default_stage():
    c = Contact(nom='Durand')
    assert c.statut == 'Prospect'


def test_contact_optional_fields_default_to_none():
    c = Contact()
    for field in ('id', 'prenom', 'nom', 'societe', 'fonction', 'email', 'telephone',
                  'adresse', 'source', 'valeur_estimee', 'temperature', 'notes',
                  'derniere_interaction', 'created_date', 'updated_date'):
        assert getattr(c, field) is None, f"Expected {field} to be None"


def test_contact_tags_default_is_not_shared():
    a, b = Contact(), Contact()
    a.tags.append('vip')
    assert b.tags == []


def test_contact_full_name():
    assert Contact(prenom='Marie', nom='Durand').full_name == 'Marie Durand'
    assert Contact(nom='Durand').full_name == 'Durand'
    assert Contact().full_name == ''


def test_contact_equality():
    c1 = Contact(id='c1', nom='Durand', societe='Acme Corp')
    c2 = Contact(id='c1', nom='Durand', societe='Acme Corp')
    assert c1 == c2


# ---------------------------------------------------------------------------
# Interaction / User / Notification
# ---------------------------------------------------------------------------

def test_interaction_defaults():
    i = Interaction(contact_id='c1')
    assert i.type == 'Note'
    assert i.statut_precedent is None
    assert i.statut_actuel is None


def test_user_defaults():
    u = User(email='ana@example.com')
    assert u.role == 'user'
    assert u.preferences == {}


def test_notification_defaults_to_unread():
    assert Notification(user_id='u1').read is False


# ---------------------------------------------------------------------------
# FilterState / Column
# ---------------------------------------------------------------------------

def test_filter_state_defaults_to_no_restriction():
    state = FilterState()
    assert state.search == ''
    assert state.statut == ALL
    assert state.source == ALL
    assert state.temperature == ALL
    assert state.tags == frozenset()


def test_filter_state_is_immutable():
    state = FilterState()
    with pytest.raises(FrozenInstanceError):
        state.search = 'acme'


def test_column_defaults():
    col = Column('nom', 'Nom')
    assert col.visible is True
    assert col.width == '150px'
    assert col.type == 'text'


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def test_utcnow_is_timezone_aware():
    now = utcnow()
    assert now.tzinfo is not None
    assert abs((datetime.now(timezone.utc) - now).total_seconds()) < 5


def test_field_names():
    assert field_names(Notification) == {
        'id', 'user_id', 'title', 'message', 'type', 'read', 'created_date',
    }
