from typing import Tuple

from pymongo import DESCENDING


UP_VOTE = "upVote"
DOWN_VOTE = "downVote"
OPPOSING_COUNTER = {UP_VOTE: DOWN_VOTE, DOWN_VOTE: UP_VOTE}

NEWEST_FIRST = [("createdAt", DESCENDING), ("_id", DESCENDING)]


##########
# Pagination
##########
def page_window(page: int, size: int) -> Tuple[int, int]:
    """Turn a 1-based page number into (skip, limit)"""
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if size < 1:
        raise ValueError(f"size must be >= 1, got {size}")
    return (page - 1) * size, size


##########
# Voting
##########
async def apply_vote(posts, post_id, counter: str):
    """Cast one vote on a post.

    The requested counter always goes up by one. If the opposing counter is
    above zero it goes down by one in the same single-document update, so
    concurrent votes never lose an increment and never push a counter below
    zero. A missing post matches nothing and the result says so.
    """
    if counter not in OPPOSING_COUNTER:
        raise ValueError(f"unknown vote counter: {counter!r}")
    opposing = OPPOSING_COUNTER[counter]

    result = await posts.update_one(
        {"_id": post_id, opposing: {"$gt": 0}},
        {"$inc": {counter: 1, opposing: -1}},
    )
    if result.matched_count:
        return result

    return await posts.update_one({"_id": post_id}, {"$inc": {counter: 1}})


##########
# Ranking
##########
def popularity_pipeline(page: int, size: int) -> list:
    skip, limit = page_window(page, size)
    return [
        {"$addFields": {"score": {"$subtract": [
            {"$ifNull": ["$upVote", 0]},
            {"$ifNull": ["$downVote", 0]},
        ]}}},
        {"$sort": {"score": -1, "createdAt": -1, "_id": -1}},
        {"$skip": skip},
        {"$limit": limit},
    ]


async def rank_posts(posts, page: int, size: int) -> list:
    """Posts ordered by upVote - downVote, highest first, one page at a time"""
    return await posts.aggregate(popularity_pipeline(page, size)).to_list(None)


##########
# Statistics
##########
async def collect_statistics(db) -> dict:
    # Three independent counts, no snapshot across them
    return {
        "users": await db.users.count_documents({}),
        "posts": await db.posts.count_documents({}),
        "comments": await db.comments.count_documents({}),
    }
