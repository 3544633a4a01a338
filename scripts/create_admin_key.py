"""Script to create an API key for a diary user."""

import argparse
import asyncio
import sys

sys.path.insert(0, ".")

from diary_media.auth.security import create_api_key, get_or_create_user
from diary_media.db.session import async_session_maker, init_db


async def main(username: str):
    """Create a full-access API key for ``username``."""
    print("Initializing database...")
    await init_db()

    print(f"Creating API key for {username}...")
    async with async_session_maker() as db:
        user = await get_or_create_user(db, username)
        api_key, full_key = await create_api_key(
            db,
            user_id=user.id,
            name=f"{username} key",
            scopes=["media:read", "media:write"],
            rate_limit_per_minute=1000,
            rate_limit_per_hour=10000,
            expires_in_days=None,  # Never expires
        )
        await db.commit()

        print("\n" + "=" * 60)
        print("API KEY CREATED SUCCESSFULLY")
        print("=" * 60)
        print(f"\nAPI Key: {full_key}")
        print(f"Key ID:  {api_key.id}")
        print(f"User ID: {user.id}")
        print(f"Prefix:  {api_key.key_prefix}")
        print("\nSAVE THIS KEY NOW - IT WILL NOT BE SHOWN AGAIN!")
        print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("username", nargs="?", default="admin")
    args = parser.parse_args()
    asyncio.run(main(args.username))
