##########
# Imports
##########
from fastapi import FastAPI, HTTPException, Depends, Request, Response, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, EmailStr, Field, constr
from typing import Optional
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
import logging
import re
import jwt
import stripe
# MongoDB
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import DESCENDING, ASCENDING
import pymongo.errors

from utils.config import Settings
from utils.markdown_utils import convert_markdown
from utils.posts import (
    UP_VOTE, DOWN_VOTE, NEWEST_FIRST,
    apply_vote, rank_posts, page_window, collect_statistics,
)
from utils.serializers import (
    oid, serialize, serialize_many,
    insert_result, update_result, delete_result,
)
from utils.tags import record_search_tag, register_tag


logger = logging.getLogger("ama")

SESSION_COOKIE = "token"
RECENT_POST_COUNT = 3


#################
# Pydantic Models
#################
class TokenRequest(BaseModel):
    email: EmailStr

class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1)
    image: Optional[str] = None

class PaymentIntentRequest(BaseModel):
    price: float = Field(..., gt=0)

class PostCreate(BaseModel):
    authorName: str
    authorEmail: EmailStr
    authorImage: Optional[str] = None
    title: str = Field(..., min_length=1)
    tag: str = Field(..., min_length=1)
    description: str = ""

class CommentCreate(BaseModel):
    postId: str
    postTitle: Optional[str] = None
    commenterName: str
    commenterEmail: EmailStr
    comment: str = Field(..., min_length=1)

class TagCreate(BaseModel):
    tag: constr(strip_whitespace=True, min_length=1)

class AnnouncementCreate(BaseModel):
    authorName: str
    authorImage: Optional[str] = None
    title: str = Field(..., min_length=1)
    description: str

class FeedbackCreate(BaseModel):
    feedback: str = Field(..., min_length=1)
    rating: Optional[int] = Field(None, ge=1, le=5)
    email: Optional[EmailStr] = None
    commentId: Optional[str] = None


######################
# Dependencies
######################
def get_settings(request: Request) -> Settings:
    return request.app.state.settings

def get_db(request: Request):
    return request.app.state.db

def utcnow():
    return datetime.now(timezone.utc)

def pagination(
    pages: int = Query(1, ge=1, description="1-based page number"),
    size: int = Query(10, ge=1, le=100),
):
    """Query params -> (skip, limit)"""
    return page_window(pages, size)

def optional_pagination(
    pages: Optional[int] = Query(None, ge=1, description="1-based page number"),
    size: Optional[int] = Query(None, ge=1, le=100),
):
    """Like pagination, but no skip/limit when neither param is given"""
    if pages is None and size is None:
        return 0, 0
    return page_window(pages or 1, size or 10)


##########
# JWT Token
##########
def create_access_token(data: dict, settings: Settings):
    """Create JWT token with expiration"""
    to_encode = data.copy()
    expire = utcnow() + timedelta(hours=settings.access_token_expire_hours)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.access_token_secret, algorithm=settings.access_token_algorithm)

def verify_token(token: str, settings: Settings):
    """Verify JWT token, return payload or None if invalid"""
    try:
        return jwt.decode(token, settings.access_token_secret, algorithms=[settings.access_token_algorithm])
    except jwt.PyJWTError:
        return None

##########
# Current User
##########
async def get_current_email(request: Request, settings: Settings = Depends(get_settings)):
    """Return the email in the session cookie or raise 401"""
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized access")

    payload = verify_token(token, settings)
    if not payload or not payload.get("email"):
        logger.warning("Rejected session token on %s", request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized access")
    return payload["email"]


##############
# Startup Hook
##############
async def create_indexes(db):
    """Initialize DB indexes on startup"""
    # Unique constraints
    await db.users.create_index("email", unique=True)
    await db.alltags.create_index("tag", unique=True)
    await db.tags.create_index("tag", unique=True)

    # Sorting & query optimization
    await db.posts.create_index([("createdAt", DESCENDING)])
    await db.posts.create_index([("authorEmail", ASCENDING), ("createdAt", DESCENDING)])
    await db.posts.create_index([("tag", ASCENDING)])
    await db.comments.create_index([("postId", ASCENDING), ("createdAt", DESCENDING)])
    await db.comments.create_index([("postTitle", ASCENDING)])


#####################
# FastAPI App Setup
#####################
def create_app(settings: Optional[Settings] = None, db=None) -> FastAPI:
    settings = settings or Settings.from_env()
    client = None
    if db is None:
        client = AsyncIOMotorClient(settings.mongo_uri)
        db = client[settings.database_name]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await create_indexes(db)
        logger.info("Indexes ready on database %s", settings.database_name)
        yield
        if client is not None:
            client.close()

    app = FastAPI(title="ama", description="Q&A forum backend", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(pymongo.errors.PyMongoError)
    async def database_error(request: Request, exc: pymongo.errors.PyMongoError):
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=503, content={"detail": "database unavailable"})

    register_routes(app)
    return app


def register_routes(app: FastAPI):

    ##################
    # Health
    ##################
    @app.get("/", response_class=PlainTextResponse)
    async def home():
        return "ama is running"


    ##########
    # Authentication
    ##########
    @app.post("/jwt")
    async def issue_token(body: TokenRequest, response: Response, settings: Settings = Depends(get_settings)):
        """Sign a session token and set it as an HTTP-only cookie"""
        token = create_access_token({"email": body.email}, settings)
        response.set_cookie(SESSION_COOKIE, token, **settings.cookie_options)
        return {"success": True}

    @app.post("/logout")
    async def logout(response: Response, settings: Settings = Depends(get_settings)):
        """Log out user by deleting cookie"""
        response.delete_cookie(SESSION_COOKIE, **settings.cookie_options)
        return {"success": True}


    ##########
    # Users
    ##########
    @app.post("/users")
    async def create_user(body: UserCreate, db=Depends(get_db), settings: Settings = Depends(get_settings)):
        """Create the user on first login, no-op if the email is known"""
        user_doc = {
            "email": body.email,
            "name": body.name,
            "image": body.image,
            "role": "user",
            "membership": "Free",
            "postLimit": settings.default_post_limit,
            "createdAt": utcnow(),
        }
        res = await db.users.update_one({"email": body.email}, {"$setOnInsert": user_doc}, upsert=True)
        if res.upserted_id is None:
            return {"message": "user already exists", "insertedId": None}

        logger.info("Created user %s", body.email)
        return {"message": "user created", "insertedId": str(res.upserted_id)}

    @app.get("/user/{email}")
    async def get_user(email: str, db=Depends(get_db)):
        return serialize(await db.users.find_one({"email": email}))

    @app.post("/upgrade/{email}")
    async def upgrade_user(email: str, db=Depends(get_db)):
        """Unlock membership after a successful payment"""
        res = await db.users.update_one(
            {"email": email},
            {"$set": {"membership": "Member", "postLimit": None}},
        )
        logger.info("Upgrade for %s matched %d user(s)", email, res.matched_count)
        return update_result(res)

    @app.post("/make-admin/{user_id}")
    async def make_admin(user_id: str, db=Depends(get_db)):
        res = await db.users.update_one({"_id": oid(user_id)}, {"$set": {"role": "admin"}})
        return update_result(res)

    @app.get("/manage-users")
    async def manage_users(window=Depends(optional_pagination), db=Depends(get_db)):
        skip, limit = window
        users = await db.users.find({}, sort=NEWEST_FIRST, skip=skip, limit=limit).to_list(None)
        return serialize_many(users)

    @app.get("/search-users")
    async def search_users(keyword: str = "", db=Depends(get_db)):
        query = {"name": {"$regex": re.escape(keyword), "$options": "i"}} if keyword else {}
        users = await db.users.find(query, sort=NEWEST_FIRST).to_list(None)
        return serialize_many(users)


    ##########
    # Payments
    ##########
    # Plain def: the Stripe SDK is blocking, FastAPI runs this in its threadpool
    @app.post("/create-payment-intent")
    def create_payment_intent(body: PaymentIntentRequest, settings: Settings = Depends(get_settings)):
        amount = int(round(body.price * 100))
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency="usd",
                payment_method_types=["card"],
                api_key=settings.stripe_secret_key,
            )
        except stripe.StripeError:
            logger.exception("Stripe rejected payment intent for %d cents", amount)
            raise HTTPException(status_code=502, detail="payment processor error")

        logger.info("Created payment intent for %d cents", amount)
        return {"clientSecret": intent.client_secret}


    ##################
    # Post Listing
    ##################
    def tag_filter(search_tag: str) -> dict:
        if not search_tag:
            return {}
        return {"tag": {"$regex": re.escape(search_tag), "$options": "i"}}

    @app.get("/all-post")
    async def all_posts(window=Depends(pagination), db=Depends(get_db)):
        skip, limit = window
        posts = await db.posts.find({}, sort=NEWEST_FIRST, skip=skip, limit=limit).to_list(None)
        return serialize_many(posts)

    @app.get("/popular-post")
    async def popular_posts(
        pages: int = Query(1, ge=1),
        size: int = Query(10, ge=1, le=100),
        db=Depends(get_db),
    ):
        return serialize_many(await rank_posts(db.posts, pages, size))

    @app.get("/search-post")
    async def search_posts(searchTag: str = "", window=Depends(pagination), db=Depends(get_db)):
        skip, limit = window
        posts = await db.posts.find(
            tag_filter(searchTag), sort=NEWEST_FIRST, skip=skip, limit=limit
        ).to_list(None)
        return serialize_many(posts)

    @app.get("/tag-search")
    async def tag_search(tag: str, window=Depends(pagination), db=Depends(get_db)):
        skip, limit = window
        posts = await db.posts.find({"tag": tag}, sort=NEWEST_FIRST, skip=skip, limit=limit).to_list(None)
        return serialize_many(posts)

    @app.get("/post-count")
    async def post_count(searchTag: str = "", db=Depends(get_db)):
        return {"count": await db.posts.count_documents(tag_filter(searchTag))}


    ##################
    # Post Management
    ##################
    @app.post("/add-post")
    async def add_post(body: PostCreate, db=Depends(get_db)):
        """Insert a post with zeroed counters, honouring the author's post limit"""
        author = await db.users.find_one({"email": body.authorEmail})
        limit = author.get("postLimit") if author else None
        if limit is not None:
            written = await db.posts.count_documents({"authorEmail": body.authorEmail})
            if written >= limit:
                logger.warning("Post limit %d reached for %s", limit, body.authorEmail)
                raise HTTPException(status_code=403, detail="post limit reached, become a member to post more")

        post_doc = {
            **body.model_dump(),
            "upVote": 0,
            "downVote": 0,
            "commentCount": 0,
            "createdAt": utcnow(),
        }
        return insert_result(await db.posts.insert_one(post_doc))

    @app.get("/my-post/{email}")
    async def my_posts(email: str, db=Depends(get_db)):
        posts = await db.posts.find({"authorEmail": email}, sort=NEWEST_FIRST).to_list(None)
        return serialize_many(posts)

    @app.get("/recent-post/{email}")
    async def recent_posts(email: str, db=Depends(get_db)):
        posts = await db.posts.find(
            {"authorEmail": email}, sort=NEWEST_FIRST, limit=RECENT_POST_COUNT
        ).to_list(None)
        return serialize_many(posts)

    @app.delete("/delete-post/{post_id}")
    async def delete_post(post_id: str, db=Depends(get_db)):
        """Delete a post and its comments"""
        pid = oid(post_id)
        res = await db.posts.delete_one({"_id": pid})
        await db.comments.delete_many({"postId": pid})
        return delete_result(res)

    @app.get("/post-details/{post_id}")
    async def post_details(post_id: str, db=Depends(get_db), email: str = Depends(get_current_email)):
        """Single post with its body rendered to HTML (login required)"""
        post = await db.posts.find_one({"_id": oid(post_id)})
        if not post:
            raise HTTPException(status_code=404, detail="Post not found")

        logger.debug("%s opened post %s", email, post_id)
        post["descriptionHtml"] = convert_markdown(post.get("description", ""))
        return serialize(post)


    ##########
    # Voting
    ##########
    @app.post("/upVote/{post_id}")
    async def up_vote(post_id: str, db=Depends(get_db)):
        return update_result(await apply_vote(db.posts, oid(post_id), UP_VOTE))

    @app.post("/downVote/{post_id}")
    async def down_vote(post_id: str, db=Depends(get_db)):
        return update_result(await apply_vote(db.posts, oid(post_id), DOWN_VOTE))


    ##########
    # Comments
    ##########
    @app.post("/add-comment")
    async def add_comment(body: CommentCreate, db=Depends(get_db)):
        pid = oid(body.postId)
        comment_doc = {**body.model_dump(), "postId": pid, "createdAt": utcnow()}
        res = await db.comments.insert_one(comment_doc)
        # Separate write: a failure here leaves commentCount one short
        await db.posts.update_one({"_id": pid}, {"$inc": {"commentCount": 1}})
        return insert_result(res)

    @app.get("/comments/{post_id}")
    async def post_comments(post_id: str, db=Depends(get_db)):
        comments = await db.comments.find({"postId": oid(post_id)}, sort=NEWEST_FIRST).to_list(None)
        return serialize_many(comments)

    @app.get("/specific-comments/{title}")
    async def comments_by_title(title: str, db=Depends(get_db)):
        comments = await db.comments.find({"postTitle": title}, sort=NEWEST_FIRST).to_list(None)
        return serialize_many(comments)


    ####################
    # Tag Management
    ####################
    @app.get("/all-tags")
    async def all_tags(db=Depends(get_db)):
        return serialize_many(await db.alltags.find({}, sort=[("tag", ASCENDING)]).to_list(None))

    @app.post("/all-tags")
    async def add_tag(body: TagCreate, db=Depends(get_db)):
        return update_result(await register_tag(db.alltags, body.tag))

    @app.get("/stored-tags")
    async def stored_tags(db=Depends(get_db)):
        return serialize_many(await db.tags.find({}, sort=[("date", DESCENDING)]).to_list(None))

    @app.post("/store-searchTag")
    async def store_search_tag(storeTag: str = "", db=Depends(get_db)):
        res = await record_search_tag(db.tags, storeTag)
        if res is None:
            return {"acknowledged": False, "message": "empty tag ignored"}
        return update_result(res)


    ##########
    # Announcements
    ##########
    @app.get("/all-announcement")
    async def all_announcements(db=Depends(get_db)):
        return serialize_many(await db.announcements.find({}, sort=NEWEST_FIRST).to_list(None))

    @app.post("/add-announcement")
    async def add_announcement(body: AnnouncementCreate, db=Depends(get_db)):
        doc = {**body.model_dump(), "createdAt": utcnow()}
        return insert_result(await db.announcements.insert_one(doc))


    ##########
    # Feedback
    ##########
    @app.get("/stored-feedback")
    async def stored_feedback(db=Depends(get_db)):
        return serialize_many(await db.feedback.find({}, sort=NEWEST_FIRST).to_list(None))

    @app.post("/add-feedback")
    async def add_feedback(body: FeedbackCreate, db=Depends(get_db)):
        doc = {**body.model_dump(), "createdAt": utcnow()}
        if body.commentId:
            doc["commentId"] = oid(body.commentId)
        return insert_result(await db.feedback.insert_one(doc))

    @app.delete("/delete-feedback/{feedback_id}")
    async def delete_feedback(feedback_id: str, db=Depends(get_db)):
        return delete_result(await db.feedback.delete_one({"_id": oid(feedback_id)}))


    ##########
    # Statistics
    ##########
    @app.get("/statistics")
    async def statistics(db=Depends(get_db)):
        return await collect_statistics(db)


settings = Settings.from_env()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
app = create_app(settings)


###############
# Entry Point
###############
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
