from datetime import datetime
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id")


def _plain(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Make a Mongo document JSON friendly (ObjectId -> str, datetime -> iso)"""
    if not doc:
        return doc
    return _plain(doc)


def serialize_many(docs: list) -> list:
    return [serialize(d) for d in docs]


##########
# Driver results
##########
# Shaped like the Node driver results the frontend was written against.
def insert_result(res) -> dict:
    return {"acknowledged": res.acknowledged, "insertedId": str(res.inserted_id)}


def update_result(res) -> dict:
    upserted = res.upserted_id
    return {
        "acknowledged": res.acknowledged,
        "matchedCount": res.matched_count,
        "modifiedCount": res.modified_count,
        "upsertedId": str(upserted) if upserted is not None else None,
    }


def delete_result(res) -> dict:
    return {"acknowledged": res.acknowledged, "deletedCount": res.deleted_count}
