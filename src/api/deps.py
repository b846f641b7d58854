"""FastAPI dependency injection functions."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from src.api.middleware.auth import AuthError, AuthErrorCode, decode_jwt
from src.core.config import get_settings
from src.schemas.auth import UserContext
from src.services.effective_profile_service import EffectiveProfileResolver
from src.services.persona_service import PersonaService
from src.services.record_store import RecordStore, SupabaseRecordStore
from src.services.visibility_cache import VisibilityCache, get_visibility_cache
from src.services.visibility_service import BatchVisibilityEvaluator, VisibilityPolicyEvaluator


async def get_current_user(
    authorization: Annotated[str, Header(description="Bearer token")] = "",
) -> UserContext:
    """Extract and validate the current user from the Authorization header.

    Args:
        authorization: The Authorization header value (Bearer token).

    Returns:
        UserContext: The authenticated user's context.

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired.
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Expected: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_jwt(parts[1]).to_user_context()
    except AuthError as e:
        detail = "Token has expired" if e.code == AuthErrorCode.TOKEN_EXPIRED else e.message
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


CurrentUser = Annotated[UserContext, Depends(get_current_user)]


def get_record_store() -> RecordStore:
    """Get the record store for the current request."""
    return SupabaseRecordStore()


Store = Annotated[RecordStore, Depends(get_record_store)]


def get_decision_cache() -> VisibilityCache | None:
    """Get the visibility decision cache, or None when disabled."""
    if not get_settings().visibility_cache_enabled:
        return None
    return get_visibility_cache()


DecisionCache = Annotated[VisibilityCache | None, Depends(get_decision_cache)]


def get_visibility_evaluator(store: Store, cache: DecisionCache) -> VisibilityPolicyEvaluator:
    """Build the single-profile visibility evaluator."""
    return VisibilityPolicyEvaluator(store, cache=cache)


def get_batch_visibility_evaluator(store: Store) -> BatchVisibilityEvaluator:
    """Build the discovery-grid batch visibility evaluator."""
    return BatchVisibilityEvaluator(store)


def get_effective_profile_resolver(store: Store) -> EffectiveProfileResolver:
    """Build the effective profile resolver."""
    return EffectiveProfileResolver(store)


def get_persona_service(store: Store, cache: DecisionCache) -> PersonaService:
    """Build the persona lifecycle service."""
    return PersonaService(store, cache=cache)


VisibilityEvaluator = Annotated[VisibilityPolicyEvaluator, Depends(get_visibility_evaluator)]
BatchEvaluator = Annotated[BatchVisibilityEvaluator, Depends(get_batch_visibility_evaluator)]
Resolver = Annotated[EffectiveProfileResolver, Depends(get_effective_profile_resolver)]
Personas = Annotated[PersonaService, Depends(get_persona_service)]
