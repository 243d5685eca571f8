# homeledger/categories.py
"""
Item categories: a fixed set of system categories visible to everyone, plus
custom categories each user adds for themselves. Items store the slug, so a
slug is unique per user (system slugs count as taken for every user) and a
category cannot be deleted while an item still uses it.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from homeledger.errors import Conflict, Forbidden, NotFound, UnknownCategory
from homeledger.models import Category, Item, Property

logger = logging.getLogger(__name__)

FALLBACK_SLUG = "other"

# (slug, name, icon)
SYSTEM_CATEGORIES = [
    ("appliance", "Appliance", "cooking-pot"),
    ("automotive", "Automotive", "car"),
    ("hvac", "HVAC", "thermometer"),
    ("plumbing", "Plumbing", "droplets"),
    ("electrical", "Electrical", "zap"),
    ("structure", "Structure", "building"),
    ("exterior", "Exterior", "trees"),
    ("furniture", "Furniture", "armchair"),
    ("electronics", "Electronics", "monitor"),
    ("other", "Other", "box"),
]
SYSTEM_SLUGS = [slug for slug, _, _ in SYSTEM_CATEGORIES]


async def seed_system_categories(session: AsyncSession) -> int:
    """Insert any missing system categories. Safe to run on every start."""
    res = await session.execute(select(Category.slug).where(Category.is_system.is_(True)))
    present = set(res.scalars().all())
    added = 0
    for slug, name, icon in SYSTEM_CATEGORIES:
        if slug not in present:
            session.add(Category(slug=slug, name=name, icon=icon, is_system=True, user_id=None))
            added += 1
    await session.commit()
    if added:
        logger.info("Seeded %d system categories", added)
    return added


def _visible_to(user_id: uuid.UUID):
    return or_(Category.is_system.is_(True), Category.user_id == user_id)


async def list_for_user(session: AsyncSession, user_id: uuid.UUID) -> List[Category]:
    res = await session.execute(
        select(Category).where(_visible_to(user_id)).order_by(Category.is_system.desc(), Category.name)
    )
    return list(res.scalars().all())


async def slugs_for_user(session: AsyncSession, user_id: uuid.UUID) -> List[str]:
    res = await session.execute(
        select(Category.slug).where(_visible_to(user_id)).order_by(Category.is_system.desc(), Category.slug)
    )
    return list(res.scalars().all())


async def slugs_for_property(session: AsyncSession, property_id: uuid.UUID) -> List[str]:
    """Categories visible to the property's owner."""
    owner = (await session.execute(select(Property.user_id).where(Property.id == property_id))).scalar_one_or_none()
    if owner is None:
        raise NotFound("Property not found")
    return await slugs_for_user(session, owner)


async def ensure_known(session: AsyncSession, user_id: uuid.UUID, slug: str) -> str:
    if slug not in await slugs_for_user(session, user_id):
        raise UnknownCategory(f"Unknown category: {slug}")
    return slug


def pick_category(known: List[str], override: Optional[str], suggested: Optional[str]) -> str:
    """
    override > suggested > "other". An unknown override is the caller's
    mistake and raises; an unknown suggestion is the model guessing and falls back.
    """
    if override:
        if override not in known:
            raise UnknownCategory(f"Unknown category: {override}")
        return override
    if suggested:
        suggested = suggested.strip().lower()
        if suggested in known:
            return suggested
        logger.info("Model suggested unknown category %r; using %s", suggested, FALLBACK_SLUG)
    return FALLBACK_SLUG


async def get_category(session: AsyncSession, category_id: uuid.UUID, user_id: uuid.UUID) -> Category:
    cat = await session.get(Category, category_id)
    if cat is None or not (cat.is_system or cat.user_id == user_id):
        raise NotFound("Category not found")
    return cat


async def get_editable_category(session: AsyncSession, category_id: uuid.UUID, user_id: uuid.UUID) -> Category:
    cat = await get_category(session, category_id, user_id)
    if cat.is_system:
        raise Forbidden("Cannot modify system categories")
    return cat


async def is_slug_taken(session: AsyncSession, slug: str, user_id: uuid.UUID) -> bool:
    res = await session.execute(
        select(func.count()).select_from(Category).where(Category.slug == slug, _visible_to(user_id))
    )
    return res.scalar_one() > 0


async def is_in_use(session: AsyncSession, slug: str, user_id: uuid.UUID) -> bool:
    res = await session.execute(
        select(func.count())
        .select_from(Item)
        .join(Property, Property.id == Item.property_id)
        .where(Item.category == slug, Property.user_id == user_id)
    )
    return res.scalar_one() > 0


async def create_category(session: AsyncSession, user_id: uuid.UUID, data: Dict[str, Any]) -> Category:
    if await is_slug_taken(session, data["slug"], user_id):
        raise Conflict("Category slug already exists")
    cat = Category(user_id=user_id, is_system=False, **data)
    session.add(cat)
    await session.flush()
    logger.info("Created category %s (%s) for user %s", cat.id, cat.slug, user_id)
    return cat


async def delete_category(session: AsyncSession, cat: Category) -> None:
    if await is_in_use(session, cat.slug, cat.user_id):
        raise Conflict("Category is in use by items and cannot be deleted")
    await session.delete(cat)
    logger.info("Deleted category %s (%s)", cat.id, cat.slug)
