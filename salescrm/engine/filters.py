"""
Filter Engine - visible contact set.

apply_filters() maps (contacts, FilterState) to the ordered subsequence that
survives search and categorical filters. Order is the input order; nothing is
re-sorted. An empty result is a valid answer ("no matches").
"""

import logging
from typing import Iterable, List, Optional

from salescrm.models import ALL, Contact, FilterState

logger = logging.getLogger(__name__)


def _normalize(text: Optional[str]) -> str:
    return (text or '').casefold()


def matches_search(contact: Contact, needle: str) -> bool:
    """
    Case-insensitive substring match on "prenom nom", societe or email.
    needle must already be normalized.
    """
    full_name = f"{contact.prenom or ''} {contact.nom or ''}"
    return (
        needle in _normalize(full_name)
        or needle in _normalize(contact.societe)
        or needle in _normalize(contact.email)
    )


def apply_filters(contacts: Iterable[Contact], state: FilterState) -> List[Contact]:
    """
    Filters compose by AND:
        1. search text (if non-empty)
        2. statut      (unless ALL)
        3. source      (unless ALL)
        4. temperature (unless ALL)
        5. tags        (if any selected: contact must carry every one)
    """
    visible = list(contacts)

    needle = _normalize(state.search)
    if needle:
        visible = [c for c in visible if matches_search(c, needle)]

    if state.statut != ALL:
        visible = [c for c in visible if c.statut == state.statut]

    if state.source != ALL:
        visible = [c for c in visible if c.source == state.source]

    if state.temperature != ALL:
        visible = [c for c in visible if c.temperature == state.temperature]

    if state.tags:
        wanted = set(state.tags)
        visible = [c for c in visible if wanted.issubset(c.tags or ())]

    return visible


class FilterEngine:
    """Recomputes the visible set on demand; remembers only its last output."""

    def __init__(self):
        self.last_output: List[Contact] = []

    def apply(self, contacts: Iterable[Contact], state: FilterState) -> List[Contact]:
        contacts = list(contacts)
        self.last_output = apply_filters(contacts, state)
        logger.debug(f"FilterEngine: {len(self.last_output)}/{len(contacts)} visible ({state})")
        return self.last_output
