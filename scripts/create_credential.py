#!/usr/bin/env python3
"""Create or reset a login credential with a proper argon2 hash."""

import argparse
import asyncio
import getpass
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))
load_dotenv(dotenv_path=ROOT / ".env")

from sqlalchemy.future import select  # noqa: E402

from core.credentials import hash_secret  # noqa: E402
from core.database import build_engine, build_sessionmaker, create_tables  # noqa: E402
from models.credential import Credential  # noqa: E402
from settings import load_settings  # noqa: E402


async def create_credential(username: str, secret: str, reset: bool = False) -> bool:
    settings = load_settings()
    engine = build_engine(settings.database_url, settings.db_timeout_seconds)
    try:
        await create_tables(engine)
        factory = build_sessionmaker(engine)
        async with factory() as session:
            result = await session.execute(select(Credential).where(Credential.username == username))
            existing = result.scalars().first()
            if existing and not reset:
                print(f"Credential {username} already exists (use --reset to change it)")
                return False

            if existing:
                existing.secret_hash = hash_secret(secret)
            else:
                session.add(Credential(username=username, secret_hash=hash_secret(secret)))
            await session.commit()
            print(f"Credential saved: {username}")
            return True
    finally:
        await engine.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("username")
    parser.add_argument("--reset", action="store_true", help="overwrite an existing credential")
    args = parser.parse_args()

    username = args.username.strip()
    if not username:
        parser.error("username must not be blank")

    secret = getpass.getpass("Password: ")
    if not secret.strip():
        parser.error("password must not be blank")
    if secret != getpass.getpass("Repeat password: "):
        parser.error("passwords do not match")

    ok = asyncio.run(create_credential(username, secret, reset=args.reset))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
