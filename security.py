from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

import config
from errors import InvalidToken
from schemas import Identity, User

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = {"sub": user.id, "email": user.email, "role": user.role}
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.ALGORITHM)


def decode_token(token: str) -> Identity:
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.ALGORITHM])
    except JWTError:
        raise InvalidToken("Invalid or expired token")
    if not payload.get("sub"):
        raise InvalidToken("Invalid token")
    return Identity(sub=str(payload["sub"]), email=payload.get("email", ""), role=payload.get("role", "USER"))
