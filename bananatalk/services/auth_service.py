"""Bearer token verification for the app's own HS256 JWTs."""

from typing import Optional
from uuid import UUID

import jwt

from bananatalk.exceptions import InvalidTokenError, MissingTokenError
from bananatalk.utils.logger import get_logger

log = get_logger(__name__)


class AuthService:
    """Verifies access tokens and extracts the user id."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    def verify_token(self, authorization_header: Optional[str]) -> UUID:
        """
        Verify a JWT and return the user id it was issued for.

        Args:
            authorization_header: The Authorization header value (Bearer <token>)

        Returns:
            The user id from the ``id`` claim (``sub`` accepted as well)

        Raises:
            MissingTokenError: If no token is provided
            InvalidTokenError: If token is invalid or expired
        """
        if not authorization_header:
            raise MissingTokenError()

        parts = authorization_header.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise InvalidTokenError("Invalid authorization header format")

        if not self._secret:
            log.error("jwt secret not configured")
            raise InvalidTokenError("Token verification failed")

        try:
            payload = jwt.decode(
                parts[1],
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": True},
            )
        except jwt.ExpiredSignatureError:
            log.warning("token expired")
            raise InvalidTokenError("Token has expired")
        except jwt.InvalidTokenError as e:
            log.warning("token invalid", error=str(e))
            raise InvalidTokenError(f"Token validation failed: {str(e)}")

        raw_id = payload.get("id") or payload.get("sub")
        if not raw_id:
            raise InvalidTokenError("Token missing user identifier")
        try:
            user_id = UUID(str(raw_id))
        except ValueError:
            raise InvalidTokenError("Token user identifier is malformed")

        log.debug("token verified", user_id=str(user_id))
        return user_id


# Singleton instance
_auth_service: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    """Get singleton auth service instance."""
    global _auth_service
    if _auth_service is None:
        from bananatalk.config import get_settings

        settings = get_settings()
        _auth_service = AuthService(secret=settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return _auth_service
