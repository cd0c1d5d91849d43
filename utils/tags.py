from datetime import datetime, timezone
from typing import Optional


async def record_search_tag(tags, text: str, now: Optional[datetime] = None):
    """Remember a searched tag, refreshing its date if it was searched before.

    Blank text is dropped and None is returned.
    """
    text = (text or "").strip()
    if not text:
        return None

    when = now or datetime.now(timezone.utc)
    return await tags.update_one({"tag": text}, {"$set": {"date": when}}, upsert=True)


async def register_tag(alltags, value: str):
    """Add an admin tag unless one with the same value already exists"""
    return await alltags.update_one(
        {"tag": value},
        {"$setOnInsert": {"tag": value, "createdAt": datetime.now(timezone.utc)}},
        upsert=True,
    )
