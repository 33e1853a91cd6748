"""
Data Models
Dataclasses for all entities. These are pure Python objects, no store logic.

Field names follow the stored record contract (prenom, nom, societe, statut, ...),
so rows from any store backend unpack straight into these classes.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Union

Number = Union[int, float]

# Sentinel used by every categorical filter for "no restriction"
ALL = 'all'

# Pipeline stages in pipeline order: (id, display name)
PIPELINE_STAGES = [
    ('Prospect', 'Prospects'),
    ('Contacté', 'Contactés'),
    ('Qualifié', 'Qualifiés'),
    ('Proposition', 'Propositions'),
    ('Négociation', 'Négociations'),
    ('Client', 'Clients'),
    ('Perdu', 'Perdus'),
]
STAGE_IDS = [stage_id for stage_id, _ in PIPELINE_STAGES]
STAGE_NAMES = dict(PIPELINE_STAGES)
DEFAULT_STAGE = 'Prospect'
LOST_STAGE = 'Perdu'

TEMPERATURES = ['Chaud', 'Tiède', 'Froid']

SOURCES = ['Site web', 'Référence', 'LinkedIn', 'Salon', 'Appel à froid', 'Email', 'Autre']

# Interaction kinds. Note and Modification are written by the audit log,
# the others are logged by hand.
INTERACTION_NOTE = 'Note'
INTERACTION_MODIFICATION = 'Modification'
INTERACTION_TYPES = [INTERACTION_NOTE, INTERACTION_MODIFICATION, 'Appel', 'Email', 'Réunion']

ROLES = ['admin', 'user']


def utcnow() -> datetime:
    """Default clock for every timestamp the core writes."""
    return datetime.now(timezone.utc)


def field_names(model) -> set:
    """Names of the dataclass fields of a record model."""
    return {f.name for f in fields(model)}


@dataclass
class Contact:
    """Contact moving through the sales pipeline"""
    id: Optional[str] = None
    prenom: Optional[str] = None
    nom: Optional[str] = None
    societe: Optional[str] = None
    fonction: Optional[str] = None
    email: Optional[str] = None
    telephone: Optional[str] = None
    adresse: Optional[str] = None
    source: Optional[str] = None
    statut: str = DEFAULT_STAGE
    valeur_estimee: Optional[Number] = None
    temperature: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    derniere_interaction: Optional[datetime] = None
    created_date: Optional[datetime] = None
    updated_date: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.prenom or ''} {self.nom or ''}".strip()


@dataclass
class Interaction:
    """Audit event / interaction history record. Never updated once written."""
    id: Optional[str] = None
    contact_id: Optional[str] = None
    type: str = INTERACTION_NOTE
    description: Optional[str] = None
    date_interaction: Optional[datetime] = None
    statut_precedent: Optional[str] = None
    statut_actuel: Optional[str] = None
    created_date: Optional[datetime] = None


@dataclass
class User:
    """CRM user account"""
    id: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: str = 'user'
    department: Optional[str] = None
    phone: Optional[str] = None
    last_seen: Optional[datetime] = None
    preferences: Dict[str, Any] = field(default_factory=dict)
    created_date: Optional[datetime] = None


@dataclass
class Notification:
    """Notification addressed to a single user"""
    id: Optional[str] = None
    user_id: Optional[str] = None
    title: Optional[str] = None
    message: Optional[str] = None
    type: Optional[str] = None
    read: bool = False
    created_date: Optional[datetime] = None


@dataclass(frozen=True)
class FilterState:
    """Search text plus categorical selections. Session-local, never persisted."""
    search: str = ''
    statut: str = ALL
    source: str = ALL
    temperature: str = ALL
    tags: FrozenSet[str] = frozenset()


@dataclass
class Column:
    """One entry of the contacts table column configuration"""
    id: str
    label: str
    visible: bool = True
    width: str = '150px'
    type: str = 'text'
