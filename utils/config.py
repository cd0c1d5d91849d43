import os
from typing import List, Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    """Runtime configuration, built once and handed to the app factory"""

    port: int = 5000
    mongo_uri: str = "mongodb://localhost:27017"
    database_name: str = "ama"
    access_token_secret: str = "your-secret-key-change-this"
    access_token_algorithm: str = "HS256"
    access_token_expire_hours: int = 1
    stripe_secret_key: str = ""
    cors_origins: List[str] = ["http://localhost:5173"]
    production: bool = False
    default_post_limit: Optional[int] = 5
    log_level: str = "INFO"

    @property
    def cookie_options(self) -> dict:
        # Cross-site frontends need SameSite=None, which browsers only accept with Secure
        return {
            "httponly": True,
            "secure": self.production,
            "samesite": "none" if self.production else "strict",
        }

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        origins = os.getenv("CORS_ORIGINS", "http://localhost:5173")
        return cls(
            port=int(os.getenv("PORT", "5000")),
            mongo_uri=build_mongo_uri(),
            database_name=os.getenv("DATABASE_NAME", "ama"),
            access_token_secret=os.getenv("ACCESS_TOKEN_SECRET", "your-secret-key-change-this"),
            access_token_expire_hours=int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "1")),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            production=os.getenv("ENVIRONMENT", "development").lower() == "production",
            default_post_limit=int(os.getenv("DEFAULT_POST_LIMIT", "5")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def build_mongo_uri() -> str:
    """Full MONGO_URI wins, then DB_USER/DB_PASS credentials, then localhost"""
    uri = os.getenv("MONGO_URI")
    if uri:
        return uri

    user = os.getenv("DB_USER")
    password = os.getenv("DB_PASS")
    if user and password:
        host = os.getenv("DB_HOST", "cluster0.mongodb.net")
        return (
            f"mongodb+srv://{quote_plus(user)}:{quote_plus(password)}@{host}/"
            "?retryWrites=true&w=majority"
        )

    return "mongodb://localhost:27017"
