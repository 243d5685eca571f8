# homeledger/auth.py
"""
API keys. The secret ("hl_" + random token) is returned once at creation;
only its sha256 hex digest is stored.
"""
import hashlib
import logging
import secrets
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger.errors import NotFound
from homeledger.models import ApiKey, utcnow

logger = logging.getLogger(__name__)

KEY_PREFIX = "hl_"


def generate_secret() -> str:
    return KEY_PREFIX + secrets.token_urlsafe(32)


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


async def create_api_key(session: AsyncSession, user_id: uuid.UUID, name: str) -> Tuple[ApiKey, str]:
    secret = generate_secret()
    key = ApiKey(user_id=user_id, name=name, key_hash=hash_secret(secret))
    session.add(key)
    await session.commit()
    logger.info("Created API key %s (%s) for user %s", key.id, name, user_id)
    return key, secret


async def list_api_keys(session: AsyncSession, user_id: uuid.UUID) -> List[ApiKey]:
    res = await session.execute(select(ApiKey).where(ApiKey.user_id == user_id).order_by(ApiKey.created_at))
    return list(res.scalars().all())


async def revoke_api_key(session: AsyncSession, user_id: uuid.UUID, key_id: uuid.UUID) -> None:
    key = await session.get(ApiKey, key_id)
    if key is None or key.user_id != user_id:
        raise NotFound("API key not found")
    await session.delete(key)
    await session.commit()
    logger.info("Revoked API key %s", key_id)


async def authenticate(session: AsyncSession, secret: str) -> Optional[ApiKey]:
    if not secret or not secret.startswith(KEY_PREFIX):
        return None
    res = await session.execute(select(ApiKey).where(ApiKey.key_hash == hash_secret(secret)))
    key = res.scalar_one_or_none()
    if key is None:
        return None
    key.last_used_at = utcnow()
    await session.commit()
    return key
