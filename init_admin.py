#!/usr/bin/env python3
"""
Seed the first super admin. Everyone else gets admin access through the
admin passwords this account hands out.

    DATABASE_URL=sqlite:///./esummit.db python init_admin.py you@iiitdm.ac.in
"""
import argparse
import asyncio
import os
import uuid

from esummit.helpers import now_ts
from esummit.infra.sql import create_schema, make_async_engine
from esummit.model.db import Base, Profile, ROLE_SUPER_ADMIN
from esummit.model.profiles import get_profile_by_email


async def promote(database_url: str, email: str, full_name: str | None) -> None:
    engine, SessionAsync, _, _ = make_async_engine(database_url)
    await create_schema(engine, Base.metadata)

    async with SessionAsync() as db:
        async with db.begin():
            profile = await get_profile_by_email(db, email)
            if profile is None:
                # same id the mock identity provider derives from the e-mail
                profile = Profile(
                    id=uuid.uuid5(uuid.NAMESPACE_URL, email.lower()).hex,
                    email=email.lower(),
                    full_name=full_name,
                    role=ROLE_SUPER_ADMIN,
                    created_at=now_ts(),
                )
                db.add(profile)
                print(f'✅ created super admin {email}')
            else:
                profile.role = ROLE_SUPER_ADMIN
                profile.updated_at = now_ts()
                if full_name and not profile.full_name:
                    profile.full_name = full_name
                print(f'✅ promoted {email} to super admin')

    await engine.dispose()


if __name__ == '__main__':
    ap = argparse.ArgumentParser(description="create or promote a super admin")
    ap.add_argument("email")
    ap.add_argument("--name", default=None, help="display name")
    ap.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL", "sqlite:///./esummit.db"),
    )
    args = ap.parse_args()
    asyncio.run(promote(args.database_url, args.email, args.name))
