"""Persona API routes."""

from fastapi import APIRouter, status

from src.api.deps import BatchEvaluator, CurrentUser, Personas, Resolver, Store, VisibilityEvaluator
from src.api.middleware.error_handler import APIError, NotFoundError, ValidationError
from src.core.config import get_settings
from src.schemas.persona import (
    BatchVisibilityRequest,
    BatchVisibilityResponse,
    EffectiveProfile,
    OverridesResponse,
    OverridesUpsert,
    ProfileCreate,
    ProfileResponse,
    ProfileUpdate,
    ProfileValidationRequest,
    ValidationResult,
    VisibilityCheckRequest,
    VisibilityDecision,
)
from src.services.effective_profile_service import ResolutionError
from src.services.profile_validation import validate_profile_data

router = APIRouter(prefix="/personas", tags=["personas"])


@router.get(
    "",
    response_model=list[ProfileResponse],
    summary="List my profiles",
    description="Returns the caller's MAIN profile followed by their secondary profiles.",
)
async def list_my_profiles(user: CurrentUser, service: Personas) -> list[ProfileResponse]:
    """List the authenticated user's profiles."""
    profiles = await service.list_profiles(user.user_id)
    return [ProfileResponse(**profile) for profile in profiles]


@router.post(
    "",
    response_model=ProfileResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a secondary profile",
    description="Creates a SECONDARY profile within the caller's tier quota.",
)
async def create_profile(
    data: ProfileCreate,
    user: CurrentUser,
    service: Personas,
    store: Store,
) -> ProfileResponse:
    """Create a secondary profile.

    Args:
        data: Profile fields.
        user: The authenticated user context.
        service: Persona lifecycle service.
        store: Record store, used to read the caller's subscription tier.

    Returns:
        ProfileResponse: The created profile.
    """
    base = await store.get_base_record(user.user_id)
    tier = base.get("subscription_tier") if base else None
    profile = await service.create_secondary_profile(user.user_id, tier, data)
    return ProfileResponse(**profile)


@router.post(
    "/validate",
    response_model=ValidationResult,
    summary="Validate profile data",
    description="Dry-run validation of a profile payload; reports every violation.",
)
async def validate_profile(data: ProfileValidationRequest, user: CurrentUser) -> ValidationResult:
    """Validate a profile payload without writing it."""
    payload = data.model_dump(exclude_none=True, exclude={"is_create"})
    return validate_profile_data(payload, is_create=data.is_create)


@router.post(
    "/visibility/batch",
    response_model=BatchVisibilityResponse,
    summary="Batch visibility check",
    description=(
        "Checks many profiles for the caller in a fixed number of queries. "
        "Normalized viewer filters are not evaluated here; profiles that no longer exist are omitted."
    ),
)
async def batch_check_visibility(
    data: BatchVisibilityRequest,
    user: CurrentUser,
    evaluator: BatchEvaluator,
) -> BatchVisibilityResponse:
    """Evaluate visibility of a discovery grid's profiles.

    Raises:
        ValidationError: If more profile IDs are sent than allowed.
    """
    max_ids = get_settings().batch_visibility_max_ids
    if len(data.profile_ids) > max_ids:
        raise ValidationError.from_messages(
            [f"At most {max_ids} profile_ids can be checked at once"],
            message="Too many profiles",
        )

    results = await evaluator.can_view_batch(user.user_id, data.viewer_attributes, data.profile_ids)
    return BatchVisibilityResponse(results=results)


@router.patch(
    "/{profile_id}",
    response_model=ProfileResponse,
    summary="Update a profile",
    description="Updates a profile if expected_version matches; returns 409 otherwise.",
)
async def update_profile(
    profile_id: str,
    data: ProfileUpdate,
    user: CurrentUser,
    service: Personas,
) -> ProfileResponse:
    """Update one of the caller's profiles."""
    profile = await service.update_profile(user.user_id, profile_id, data)
    return ProfileResponse(**profile)


@router.delete(
    "/{profile_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a profile",
    description="Soft-deletes a secondary profile. The MAIN profile cannot be deleted.",
)
async def delete_profile(profile_id: str, user: CurrentUser, service: Personas) -> None:
    """Soft-delete one of the caller's secondary profiles."""
    await service.delete_profile(user.user_id, profile_id)


@router.put(
    "/{profile_id}/overrides",
    response_model=OverridesResponse,
    summary="Set profile overrides",
    description="Creates or replaces a secondary profile's field and photo overrides.",
)
async def upsert_overrides(
    profile_id: str,
    data: OverridesUpsert,
    user: CurrentUser,
    service: Personas,
) -> OverridesResponse:
    """Write a secondary profile's overrides."""
    overrides = await service.upsert_overrides(user.user_id, profile_id, data)
    return OverridesResponse(**overrides)


@router.post(
    "/{profile_id}/visibility",
    response_model=VisibilityDecision,
    summary="Check profile visibility",
    description="Returns whether the caller may see the profile and why.",
)
async def check_visibility(
    profile_id: str,
    data: VisibilityCheckRequest,
    user: CurrentUser,
    evaluator: VisibilityEvaluator,
) -> VisibilityDecision:
    """Evaluate visibility of one profile for the caller."""
    return await evaluator.can_view(user.user_id, data.viewer_attributes, profile_id)


@router.post(
    "/{profile_id}/view",
    response_model=EffectiveProfile,
    summary="View a profile",
    description="Returns the effective profile if the caller may see it, 404 otherwise.",
)
async def view_profile(
    profile_id: str,
    data: VisibilityCheckRequest,
    user: CurrentUser,
    evaluator: VisibilityEvaluator,
    resolver: Resolver,
) -> EffectiveProfile:
    """Resolve a profile for a viewer who passed the visibility check.

    Raises:
        NotFoundError: If the profile is not visible or does not exist.
        APIError: If the profile's base record is missing or the store is down.
    """
    decision = await evaluator.can_view(user.user_id, data.viewer_attributes, profile_id)
    if not decision.allowed:
        raise NotFoundError("Profile not found")

    result = await resolver.resolve(profile_id)
    if result.profile is not None:
        return result.profile

    if result.error == ResolutionError.BASE_RECORD_MISSING:
        raise APIError(message="Profile data is incomplete", error_type="profile_integrity_error")
    if result.error == ResolutionError.STORE_UNAVAILABLE:
        raise APIError(
            message="Profile data is temporarily unavailable",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_type="store_unavailable",
        )
    raise NotFoundError("Profile not found")
