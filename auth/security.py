"""
Security utilities for authentication.
Password hashing and JWT access tokens.
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Tuple

import bcrypt
from fastapi.security import HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

import config

# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b",
    bcrypt__rounds=config.BCRYPT_ROUNDS
)

# Bearer scheme; a missing header is reported as Unauthenticated by the resolver
bearer_scheme = HTTPBearer(auto_error=False)

SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:,.<>?"


def validate_password(password: str) -> Tuple[bool, Optional[str]]:
    """
    Validate password strength.

    Requirements:
    - Minimum 8 characters
    - At least 1 number
    - At least 1 special character
    - Maximum 72 bytes (bcrypt limit)

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not password:
        return False, "Password is required"

    if len(password) < 8:
        return False, "Password must be at least 8 characters long"

    if len(password.encode('utf-8')) > 72:
        return False, "Password cannot be longer than 72 bytes. Please use a shorter password."

    if not any(char.isdigit() for char in password):
        return False, "Password must contain at least one number"

    if not any(char in SPECIAL_CHARS for char in password):
        return False, f"Password must contain at least one special character ({SPECIAL_CHARS})"

    return True, None


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError:
        # Hashes written by other bcrypt front-ends
        return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    Note: Password validation should be done before calling this function.
    """
    password_bytes = password.encode('utf-8')
    if len(password_bytes) > 72:
        raise ValueError("Password cannot be longer than 72 bytes. Please use a shorter password.")
    return bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)).decode('utf-8')


def create_access_token(
    data: Dict[str, Any],
    secret_key: str = None,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Data to encode in token
        secret_key: Secret key for signing (defaults to config.SECRET_KEY)
        expires_delta: Optional expiration time

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()
    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "iat": now,
        "type": "access"
    })
    return jwt.encode(to_encode, secret_key or config.SECRET_KEY, algorithm=config.ALGORITHM)


def decode_access_token(token: str, secret_key: str = None) -> Optional[Dict[str, Any]]:
    """
    Decode and verify a JWT access token.

    Returns:
        Decoded token data or None if invalid or expired
    """
    try:
        payload = jwt.decode(token, secret_key or config.SECRET_KEY, algorithms=[config.ALGORITHM])
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        return None
