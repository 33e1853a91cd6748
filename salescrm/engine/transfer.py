"""
Contact Import / Export
Exports the visible contact set to CSV or XLSX and imports contacts from the
same formats.

Import features:
- Accepts field ids (prenom, societe, ...) or table labels (Prénom, Société, ...) as headers
- Deduplication by email, or fuzzy name + company match when a row has no email
- Every imported contact goes through StageMachine.create_contact, so each
  one gets its 'Contact créé' audit event
- Bad rows are reported, never fatal to the whole import
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd
from rapidfuzz import fuzz
from tqdm import tqdm

from salescrm.engine.columns import DEFAULT_COLUMNS
from salescrm.errors import CrmError, ValidationError
from salescrm.models import Contact, field_names
from salescrm.store.base import MANAGED_FIELDS

logger = logging.getLogger(__name__)

EXPORT_FIELDS = [
    'id', 'prenom', 'nom', 'societe', 'fonction', 'email', 'telephone', 'adresse',
    'source', 'statut', 'valeur_estimee', 'temperature', 'tags', 'notes',
    'derniere_interaction', 'created_date', 'updated_date',
]
IMPORT_FIELDS = (field_names(Contact) - MANAGED_FIELDS) - {'derniere_interaction'}

# Header label (as shown in the contacts table) -> field id
_LABEL_TO_FIELD = {c.label.casefold(): c.id for c in DEFAULT_COLUMNS}

FUZZY_THRESHOLD = 90


@dataclass
class ImportReport:
    created: List[Contact] = field(default_factory=list)
    skipped: List[Tuple[int, str]] = field(default_factory=list)
    failed: List[Tuple[int, str]] = field(default_factory=list)


# =============================================================================
# EXPORT
# =============================================================================

def _export_value(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, list):
        return ', '.join(value)
    return value


def contacts_frame(contacts: Iterable[Contact], fields: Optional[List[str]] = None) -> pd.DataFrame:
    fields = fields or EXPORT_FIELDS
    rows = [{name: _export_value(asdict(c).get(name)) for name in fields} for c in contacts]
    return pd.DataFrame(rows, columns=fields)


def export_contacts(contacts: Iterable[Contact], path, fields: Optional[List[str]] = None) -> int:
    """
    Write contacts to path (.csv or .xlsx). Returns the number of rows written.
    """
    path = Path(path)
    df = contacts_frame(contacts, fields)
    suffix = path.suffix.lower()
    if suffix == '.csv':
        df.to_csv(path, index=False)
    elif suffix == '.xlsx':
        df.to_excel(path, index=False)
    else:
        raise ValidationError(f"Unsupported export format {suffix!r}; use .csv or .xlsx")
    logger.info(f"Exported {len(df)} contacts to {path}")
    return len(df)


# =============================================================================
# IMPORT
# =============================================================================

def read_rows(path) -> List[Dict[str, Any]]:
    """Read a CSV / XLSX file into dicts keyed by field id, blanks dropped."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == '.csv':
        df = pd.read_csv(path, dtype=object)
    elif suffix == '.xlsx':
        df = pd.read_excel(path, dtype=object)
    else:
        raise ValidationError(f"Unsupported import format {suffix!r}; use .csv or .xlsx")

    rename = {}
    for header in df.columns:
        key = str(header).strip()
        name = _LABEL_TO_FIELD.get(key.casefold(), key)
        if name in IMPORT_FIELDS:
            rename[header] = name
        else:
            logger.debug(f"read_rows: ignoring column {header!r}")
    df = df[list(rename)].rename(columns=rename)

    rows = []
    for record in df.to_dict('records'):
        rows.append({
            k: (v.strip() if isinstance(v, str) else v)
            for k, v in record.items()
            if not pd.isna(v) and v != ''
        })
    return rows


def row_to_fields(row: Dict[str, Any]) -> Dict[str, Any]:
    """Convert raw cell values to contact field values."""
    fields = dict(row)
    if 'valeur_estimee' in fields:
        raw = str(fields['valeur_estimee']).replace(' ', '').replace(',', '.')
        try:
            fields['valeur_estimee'] = Decimal(raw)
        except InvalidOperation:
            raise ValidationError(f"valeur_estimee is not a number: {row['valeur_estimee']!r}")
    if 'tags' in fields:
        fields['tags'] = [t.strip() for t in str(fields['tags']).split(',') if t.strip()]
    if 'telephone' in fields:
        fields['telephone'] = str(fields['telephone'])
    return fields


def _dedup_label(fields: Dict[str, Any]) -> str:
    name = f"{fields.get('prenom') or ''} {fields.get('nom') or ''}".strip()
    return f"{name} {fields.get('societe') or ''}".strip().casefold()


def find_duplicate(fields: Dict[str, Any], existing: List[Contact],
                   threshold: int = FUZZY_THRESHOLD) -> Optional[Contact]:
    """
    Same email (case-insensitive) wins. Without an email, fall back to a fuzzy
    match on "prenom nom societe".
    """
    email = (fields.get('email') or '').casefold()
    if email:
        for contact in existing:
            if (contact.email or '').casefold() == email:
                return contact
        return None

    label = _dedup_label(fields)
    if not label:
        return None
    best_score, best = 0, None
    for contact in existing:
        score = fuzz.ratio(label, _dedup_label(asdict(contact)))
        if score > best_score:
            best_score, best = score, contact
    if best_score >= threshold:
        logger.info(f"Fuzzy matched {label!r} to contact {best.id} (score: {best_score:.0f})")
        return best
    return None


async def import_contacts(machine, path, existing: Optional[List[Contact]] = None,
                          threshold: int = FUZZY_THRESHOLD, progress: bool = False) -> ImportReport:
    """
    Create a contact for every non-duplicate row of path.
    Row numbers in the report are 1-based data rows (header excluded).
    """
    rows = read_rows(path)
    known = list(existing or [])
    report = ImportReport()

    for number, row in enumerate(tqdm(rows, desc="Importing contacts", unit="contact", disable=not progress), 1):
        try:
            fields = row_to_fields(row)
            duplicate = find_duplicate(fields, known, threshold)
            if duplicate is not None:
                report.skipped.append((number, f"duplicate of contact {duplicate.id}"))
                continue
            contact = await machine.create_contact(fields)
        except CrmError as exc:
            logger.warning(f"import_contacts: row {number} rejected: {exc}")
            report.failed.append((number, str(exc)))
            continue
        report.created.append(contact)
        known.append(contact)

    logger.info(
        f"Imported {path}: {len(report.created)} created, "
        f"{len(report.skipped)} skipped, {len(report.failed)} failed"
    )
    return report
