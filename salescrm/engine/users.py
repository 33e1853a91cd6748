"""
User directory: search, presence and role management.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from salescrm.errors import ValidationError
from salescrm.models import ALL, ROLES, User, utcnow
from salescrm.store.base import RecordStore

logger = logging.getLogger(__name__)

ONLINE_MINUTES = 5


def filter_users(users: Iterable[User], search: str = '', role: str = ALL) -> List[User]:
    """Case-insensitive search over full name, email and department, then role."""
    visible = list(users)
    needle = (search or '').casefold()
    if needle:
        visible = [
            u for u in visible
            if needle in (u.full_name or '').casefold()
            or needle in (u.email or '').casefold()
            or needle in (u.department or '').casefold()
        ]
    if role != ALL:
        visible = [u for u in visible if u.role == role]
    return visible


def _minutes_since(last_seen: datetime, now: datetime) -> float:
    return (now - last_seen).total_seconds() / 60


def is_online(user: User, now: Optional[datetime] = None) -> bool:
    if user.last_seen is None:
        return False
    return _minutes_since(user.last_seen, now or utcnow()) < ONLINE_MINUTES


def presence(last_seen: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Human-readable last-seen label."""
    if last_seen is None:
        return "Jamais connecté"
    minutes = _minutes_since(last_seen, now or utcnow())
    if minutes < ONLINE_MINUTES:
        return "En ligne"
    if minutes < 60:
        return f"Il y a {int(minutes)} min"
    if minutes < 24 * 60:
        return f"Il y a {int(minutes // 60)}h"
    return last_seen.strftime('%d/%m/%Y')


def user_stats(users: Iterable[User], now: Optional[datetime] = None) -> Dict[str, int]:
    users = list(users)
    now = now or utcnow()
    return {
        'total': len(users),
        'admins': sum(1 for u in users if u.role == 'admin'),
        'users': sum(1 for u in users if u.role == 'user'),
        'online': sum(1 for u in users if is_online(u, now)),
    }


async def change_role(store: RecordStore, user_id, role: str, acting_user: User) -> User:
    """
    Set a user's role. Only admins may do it, and never on themselves.
    """
    if role not in ROLES:
        raise ValidationError(f"Unknown role {role!r}; expected one of {ROLES}")
    if acting_user.role != 'admin':
        raise ValidationError("Only administrators can change roles")
    if acting_user.id == user_id:
        raise ValidationError("Administrators cannot change their own role")

    user = await store.update(user_id, {'role': role})
    logger.info(f"User {user_id} role set to {role!r} by {acting_user.id}")
    return user
