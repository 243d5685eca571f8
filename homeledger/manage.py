# homeledger/manage.py
"""Admin commands: create tables, mint an API key for a user.

    python -m homeledger.manage init-db
    python -m homeledger.manage create-api-key --user-id <uuid> --name laptop
"""
import argparse
import asyncio
import uuid

from homeledger.auth import create_api_key
from homeledger.db import AsyncSessionLocal, close_engine, init_models


async def _init_db() -> None:
    await init_models()
    await close_engine()


async def _create_key(user_id: uuid.UUID, name: str) -> str:
    async with AsyncSessionLocal() as session:
        key, secret = await create_api_key(session, user_id, name)
    await close_engine()
    print(f"API key {key.id} ({name}) for user {user_id}")
    print(f"Secret (shown once): {secret}")
    return secret


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="HomeLedger administration")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create tables from the ORM models")
    key_cmd = sub.add_parser("create-api-key", help="Create an API key for a user")
    key_cmd.add_argument("--user-id", type=uuid.UUID, default=None, help="Owner id (default: new random user)")
    key_cmd.add_argument("--name", default="default", help="Label for the key")
    args = parser.parse_args(argv)

    if args.command == "init-db":
        asyncio.run(_init_db())
        print("Tables created")
    elif args.command == "create-api-key":
        asyncio.run(_create_key(args.user_id or uuid.uuid4(), args.name))


if __name__ == "__main__":
    main()
