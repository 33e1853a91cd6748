"""
Column Preference - which contact attributes the contacts table shows.

The configuration is an ordered list of Column entries, unique by id, and is
only ever replaced wholesale. It lives in a small JSON key/value file, the
terminal counterpart of browser-local storage.
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from salescrm.errors import StoreError, ValidationError
from salescrm.models import Column

logger = logging.getLogger(__name__)

COLUMNS_KEY = 'contacts-columns'

DEFAULT_COLUMNS = [
    Column('prenom', 'Prénom', True, '150px', 'text'),
    Column('nom', 'Nom', True, '150px', 'text'),
    Column('societe', 'Société', True, '180px', 'text'),
    Column('email', 'Email', True, '220px', 'email'),
    Column('telephone', 'Téléphone', True, '150px', 'text'),
    Column('source', 'Source', True, '120px', 'select'),
    Column('statut', 'Statut', True, '120px', 'select'),
    Column('derniere_interaction', 'Dernière interaction', False, '150px', 'date'),
    Column('valeur_estimee', 'Valeur estimée', False, '130px', 'number'),
    Column('temperature', 'Température', True, '120px', 'select'),
    Column('adresse', 'Adresse', False, '200px', 'text'),
    Column('notes', 'Notes', False, '150px', 'text'),
]


class JsonPreferenceStorage:
    """Key/value preferences persisted as one JSON object on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding='utf-8'))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read preferences from {self.path}: {e}") from e

    def get(self, key: str, default=None):
        return self._read().get(key, default)

    def set(self, key: str, value) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def _write(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding='utf-8')
        except OSError as e:
            raise StoreError(f"Cannot write preferences to {self.path}: {e}") from e


def _coerce(entry) -> Column:
    if isinstance(entry, Column):
        if not entry.id:
            raise ValidationError(f"Column entry without an id: {entry!r}")
        return Column(**asdict(entry))
    if isinstance(entry, dict):
        if not entry.get('id'):
            raise ValidationError(f"Column entry without an id: {entry!r}")
        try:
            return Column(**entry)
        except TypeError as e:
            raise ValidationError(f"Malformed column entry {entry!r}: {e}") from e
    raise ValidationError(f"Column entries must be Column or dict, got {type(entry).__name__}")


def validate_columns(entries: Iterable) -> List[Column]:
    """Copy entries into fresh Column objects and reject duplicate ids."""
    columns = [_coerce(entry) for entry in entries]
    seen = set()
    duplicates = []
    for column in columns:
        if column.id in seen:
            duplicates.append(column.id)
        seen.add(column.id)
    if duplicates:
        raise ValidationError(f"Duplicate column ids: {sorted(set(duplicates))}")
    return columns


class ColumnPreference:

    def __init__(self, storage, defaults: Optional[List[Column]] = None):
        self._storage = storage
        self._defaults = [Column(**asdict(c)) for c in (DEFAULT_COLUMNS if defaults is None else defaults)]

    def get_columns(self) -> List[Column]:
        saved = self._storage.get(COLUMNS_KEY)
        if saved is None:
            return [Column(**asdict(c)) for c in self._defaults]
        return [Column(**entry) for entry in saved]

    def visible_columns(self) -> List[Column]:
        return [c for c in self.get_columns() if c.visible]

    def set_columns(self, new_config: Iterable) -> List[Column]:
        """Validate, then replace the whole persisted configuration."""
        columns = validate_columns(new_config)
        self._storage.set(COLUMNS_KEY, [asdict(c) for c in columns])
        logger.info(f"Column configuration replaced: {[c.id for c in columns if c.visible]} visible")
        return columns

    def show_only(self, column_ids: Iterable[str]) -> List[Column]:
        """Make exactly column_ids visible, keeping order and widths."""
        wanted = list(column_ids)
        current = self.get_columns()
        unknown = set(wanted) - {c.id for c in current}
        if unknown:
            raise ValidationError(f"Unknown column ids: {sorted(unknown)}")
        for column in current:
            column.visible = column.id in wanted
        return self.set_columns(current)

    def reset(self) -> List[Column]:
        return self.set_columns(self._defaults)
