"""
Record Store Contract
The only persistence surface the engine talks to. One store instance per record
kind (Contact, Interaction, User, Notification); every operation is a coroutine.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from salescrm.errors import ValidationError
from salescrm.models import Contact, Interaction, Notification, User, field_names

# Fields a record must carry (non-empty) to be accepted by create()
REQUIRED_FIELDS = {
    Contact: ('nom',),
    Interaction: ('contact_id', 'type'),
    User: ('email',),
    Notification: ('user_id',),
}

# Fields the store stamps itself; callers may not set them
MANAGED_FIELDS = {'id', 'created_date', 'updated_date'}


def parse_sort_key(sort_key: Optional[str]) -> Tuple[Optional[str], bool]:
    """'-updated_date' -> ('updated_date', True). None -> (None, False)."""
    if not sort_key:
        return None, False
    if sort_key.startswith('-'):
        return sort_key[1:], True
    return sort_key, False


def sort_records(records: List[Any], sort_key: Optional[str]) -> List[Any]:
    """
    Stable sort on one attribute. Records missing the attribute (None) go last
    in both directions.
    """
    attr, descending = parse_sort_key(sort_key)
    if attr is None:
        return list(records)
    present = [r for r in records if getattr(r, attr, None) is not None]
    missing = [r for r in records if getattr(r, attr, None) is None]
    present.sort(key=lambda r: getattr(r, attr), reverse=descending)
    return present + missing


def check_fields(model, values: Dict[str, Any], kind: str) -> None:
    """Raise ValidationError for unknown or store-managed field names."""
    invalid = set(values) - (field_names(model) - MANAGED_FIELDS)
    if invalid:
        raise ValidationError(f"Invalid {kind} fields: {sorted(invalid)}")


def check_required(model, values: Dict[str, Any], kind: str) -> None:
    """Raise ValidationError when a required field is missing or blank."""
    missing = [name for name in REQUIRED_FIELDS.get(model, ())
               if values.get(name) in (None, '')]
    if missing:
        raise ValidationError(f"Missing required {kind} fields: {missing}")


class RecordStore(ABC):
    """
    Store contract, per record kind.

    - list(sort_key)                       all records, sorted
    - filter(predicate, sort_key, limit)   exact-match conjunction over fields
    - create(fields)                       ValidationError on missing required fields
    - update(id, patch)                    NotFoundError if id absent
    - delete(id)                           NotFoundError if id absent

    Persistence failures surface as StoreError.
    """

    def __init__(self, model):
        self.model = model
        self.kind = model.__name__

    @abstractmethod
    async def list(self, sort_key: Optional[str] = None) -> List[Any]:
        ...

    @abstractmethod
    async def filter(self, predicate: Dict[str, Any], sort_key: Optional[str] = None,
                     limit: Optional[int] = None) -> List[Any]:
        ...

    @abstractmethod
    async def create(self, fields: Dict[str, Any]) -> Any:
        ...

    @abstractmethod
    async def update(self, record_id, patch: Dict[str, Any]) -> Any:
        ...

    @abstractmethod
    async def delete(self, record_id) -> None:
        ...
