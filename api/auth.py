"""
Authentication for the FastAPI API: password hashing, bearer tokens and signup/login.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from catalog.errors import UnauthenticatedError
from catalog.models import User

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Security scheme; a missing header is reported as 401 by get_current_user_id
security = HTTPBearer(auto_error=False)


class TokenManager:
    """Issues and verifies signed access tokens."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_hours: int = 24):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_hours = expire_hours

    def create_access_token(self, user_id: str) -> str:
        """
        Create a token carrying the user's id.

        Args:
            user_id: Identifier of the authenticated user

        Returns:
            Encoded JWT
        """
        expires_at = datetime.now(timezone.utc) + timedelta(hours=self.expire_hours)
        return jwt.encode(
            {"user_id": user_id, "exp": expires_at},
            self.secret_key,
            algorithm=self.algorithm,
        )

    def verify_access_token(self, token: str) -> str:
        """
        Decode a token and return the user id it was issued for.

        Raises:
            UnauthenticatedError: if the token is expired, tampered with or incomplete
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise UnauthenticatedError("Token has expired", reason="token_expired")
        except JWTError:
            raise UnauthenticatedError("Could not validate token", reason="invalid_token")

        user_id = payload.get("user_id")
        if not user_id:
            raise UnauthenticatedError("Could not validate token", reason="invalid_token")
        return user_id


class AccountService:
    """Handles user signup and login."""

    def __init__(self, store, token_manager: TokenManager):
        """
        Args:
            store: User store offering insert_user and find_user_by_email
            token_manager: Issues tokens on successful login
        """
        self.store = store
        self.token_manager = token_manager

    async def signup(self, email: str, password: str) -> User:
        """
        Register a new user.

        Raises:
            ConflictError: if the email is already registered
        """
        user = User(email=email, password_hash=pwd_context.hash(password))
        user.id = await self.store.insert_user(user)
        logger.info("User created", user_id=user.id)
        return user

    async def login(self, email: str, password: str) -> Dict[str, str]:
        """
        Check credentials and issue an access token.

        Unknown emails and wrong passwords get the same error.

        Returns:
            Dictionary with ``user_id`` and ``token``

        Raises:
            UnauthenticatedError: on bad credentials
        """
        user = await self.store.find_user_by_email(email)
        if not user or not pwd_context.verify(password, user.password_hash):
            logger.warning("Failed login attempt")
            raise UnauthenticatedError("Invalid email or password", reason="invalid_credentials")

        logger.info("User logged in", user_id=user.id)
        return {
            "user_id": user.id,
            "token": self.token_manager.create_access_token(user.id),
        }


async def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Resolve the authenticated user from the ``Authorization: Bearer`` header.

    Returns:
        The user id the token was issued for

    Raises:
        UnauthenticatedError: if the header is missing or the token is invalid
    """
    if credentials is None:
        raise UnauthenticatedError("Authentication required", reason="missing_token")
    return request.app.state.token_manager.verify_access_token(credentials.credentials)
