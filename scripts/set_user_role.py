#!/usr/bin/env python3
"""One-off: set a user's role directly in the database (the API cannot grant super_admin).
Usage: python scripts/set_user_role.py user@example.com super_admin"""
import asyncio
import sys

from sqlalchemy import select

from raceup_api.db.session import async_session_maker
from raceup_api.models.audit_log import ACTION_ROLE_CHANGED
from raceup_api.models.user import ROLE_ADMIN, ROLE_SUPER_ADMIN, ROLE_USER, User
from raceup_api.services.auth_store import SqlAuthStore
from raceup_api.services.sessions import normalize_email

ROLES = (ROLE_USER, ROLE_ADMIN, ROLE_SUPER_ADMIN)


async def main(email: str, role: str) -> int:
    if role not in ROLES:
        print(f"Role must be one of: {', '.join(ROLES)}")
        return 2
    async with async_session_maker() as session:
        store = SqlAuthStore(session)
        user = await store.get_user_by_email(normalize_email(email))
        if user is None:
            r = await session.execute(select(User.email).order_by(User.created_at.desc()).limit(5))
            print(f"No user with email {email}. Latest users: {', '.join(e for (e,) in r.all()) or 'none'}")
            return 1
        previous = user.role
        await store.set_role(user, role)
        await store.record_audit(
            None, ACTION_ROLE_CHANGED, "user", user.id, {"from": previous, "to": role, "via": "script"}
        )
        await session.commit()
    print(f"{email}: {previous} -> {role}")
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print(__doc__)
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1], sys.argv[2])))
