"""Flask extensions shared by the flow tree backend."""

from flask import g
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_sqlalchemy import SQLAlchemy


def _caller_key() -> str:
    """Rate limit per calling user; unauthenticated requests fall back to the address."""

    user_id = getattr(g, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return f"addr:{get_remote_address()}"


db = SQLAlchemy()
cors = CORS()
limiter = Limiter(key_func=_caller_key, default_limits=[], headers_enabled=True)

__all__ = ["db", "cors", "limiter"]
