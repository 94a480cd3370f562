from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import settings
from database import create_document, get_db, to_object_id
from errors import Conflict, InvalidCredentials, InvalidRequest, Unauthorized
from schemas import User

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# --------------------- Utility ---------------------

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # unrecognised or corrupt hash
        return False


def normalize_email(email: str) -> str:
    return email.strip().lower()


def create_token(user_id: str, expires_minutes: Optional[int] = None) -> str:
    if expires_minutes is None:
        expires_minutes = settings.access_token_expire_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode = {"id": str(user_id), "exp": expire}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> str:
    """Return the user id carried by a token, or raise Unauthorized."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise Unauthorized("Invalid or expired token")
    user_id = payload.get("id")
    if not user_id:
        raise Unauthorized("Invalid or expired token")
    return user_id


# --------------------- Accounts ---------------------

def signup(db: Database, name: Optional[str], email: str, password: str) -> str:
    email = normalize_email(email)
    if not password:
        raise InvalidRequest("Password is required")
    if db["user"].find_one({"email": email}):
        raise Conflict("User already exists")

    user = User(name=name, email=email, password_hash=hash_password(password))
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        # lost a race with a concurrent signup for the same email
        raise Conflict("User already exists")

    logger.info("User signed up", user_id=str(user_id))
    return create_token(str(user_id))


def login(db: Database, email: str, password: str) -> str:
    user = db["user"].find_one({"email": normalize_email(email)})
    if not user or not verify_password(password, user.get("password_hash")):
        logger.warning("Failed login attempt")
        raise InvalidCredentials()
    return create_token(str(user["_id"]))


# --------------------- Dependencies ---------------------

def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    if not authorization:
        raise Unauthorized("Missing Authorization header")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise Unauthorized("Invalid Authorization header")

    user_id = decode_token(parts[1])
    try:
        oid = to_object_id(user_id)
    except InvalidRequest:
        raise Unauthorized("Invalid or expired token")

    user = db["user"].find_one({"_id": oid})
    if not user:
        raise Unauthorized("User no longer exists")
    return user
