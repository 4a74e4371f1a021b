"""JWT Token Validation for console users"""
import jwt
from typing import Any, Dict, Optional

from ..config.settings import settings
from ..domain.errors import AuthenticationError
from ..domain.models import ActorContext
from .logger import get_logger

logger = get_logger(__name__)


class JWTValidator:
    """Validates bearer tokens issued by the identity provider in front of the console"""

    def validate_token(self, token: str) -> Dict[str, Any]:
        """
        Validate a JWT and return its claims

        In DEVELOPMENT mode the signature is not verified so locally minted
        tokens work; expiry is still checked.

        Raises:
            AuthenticationError: If token is invalid
        """
        if not token:
            raise AuthenticationError("Token is missing")

        if token.startswith("Bearer "):
            token = token[7:]

        try:
            if settings.is_development:
                claims = jwt.decode(
                    token,
                    options={
                        "verify_signature": False,
                        "verify_exp": True,
                        "verify_aud": False,
                    }
                )
                logger.debug(f"Dev mode - User: {claims.get('email', 'unknown')}")
                return claims

            decode_options = {"verify_exp": True, "verify_aud": bool(settings.jwt_audience)}
            return jwt.decode(
                token,
                settings.jwt_secret,
                algorithms=[settings.jwt_algorithm],
                audience=settings.jwt_audience or None,
                options=decode_options,
            )

        except jwt.ExpiredSignatureError:
            logger.warning("Token expired")
            raise AuthenticationError("Token has expired")
        except jwt.InvalidAudienceError as e:
            logger.warning(f"Invalid token audience: {e}")
            raise AuthenticationError("Invalid token audience")
        except jwt.PyJWTError as e:
            logger.error(f"JWT validation error: {e}")
            raise AuthenticationError(f"Invalid token: {str(e)}")

    def get_actor_context(self, token: str) -> ActorContext:
        """
        Build the actor from validated claims

        Claims: sub (directory user id), email, name, roles (role ids),
        is_super_admin
        """
        claims = self.validate_token(token)

        user_id = claims.get("sub") or claims.get("user_id")
        email = claims.get("email") or claims.get("preferred_username")
        if not user_id or not email:
            logger.warning(f"Token lacks sub/email. Available claims: {list(claims.keys())}")
            raise AuthenticationError("Unable to determine user from token")

        roles = claims.get("roles") or []
        if isinstance(roles, str):
            roles = [roles]

        return ActorContext(
            user_id=str(user_id),
            email=email,
            display_name=claims.get("name") or email,
            roles=list(roles),
            is_super_admin=bool(claims.get("is_super_admin", False)),
        )


# Global validator instance
_jwt_validator: Optional[JWTValidator] = None


def get_jwt_validator() -> JWTValidator:
    """Get global JWT validator instance"""
    global _jwt_validator
    if _jwt_validator is None:
        _jwt_validator = JWTValidator()
    return _jwt_validator


def get_current_user(authorization: str) -> ActorContext:
    """
    Get current user from authorization header

    Args:
        authorization: Authorization header value

    Returns:
        ActorContext
    """
    if not authorization:
        raise AuthenticationError("Authorization header is missing")

    return get_jwt_validator().get_actor_context(authorization)
