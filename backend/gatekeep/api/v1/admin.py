"""Admin API router.

Session inspection and revocation, user listing, and full account deletion.
Every endpoint requires the X-Admin-Key header (AdminKey dependency).
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, Response

from gatekeep.api.deps import AdminKey, IdentityServiceDep
from gatekeep.core.pagination import PaginationParams, pagination_params
from gatekeep.core.responses import DataResponse, ListResponse, PaginationMeta
from gatekeep.schemas.identity import CascadeDeletionResponse, SessionResponse, UserResponse

router = APIRouter()

UserIdParam = Annotated[str, Path(max_length=36, description="User id")]
SessionLimit = Annotated[
    int,
    Query(ge=0, le=1000, description="Maximum sessions to scan (0 = all)"),
]


# =============================================================================
# Sessions
# =============================================================================


@router.get("/sessions")
async def list_sessions(
    _admin: AdminKey,
    service: IdentityServiceDep,
    user_id: Annotated[str, Query(min_length=1, max_length=36)],
    limit: SessionLimit = 0,
) -> DataResponse[list[SessionResponse]]:
    """List a user's live sessions."""
    sessions = await service.list_user_sessions(user_id, limit)
    return DataResponse(data=[SessionResponse.from_session(s) for s in sessions])


@router.delete("/sessions/{token}", status_code=204)
async def revoke_session(
    _admin: AdminKey,
    service: IdentityServiceDep,
    token: Annotated[str, Path(min_length=1, max_length=256)],
) -> Response:
    await service.revoke_session(token)
    return Response(status_code=204)


# =============================================================================
# Users
# =============================================================================


@router.get("/users")
async def list_users(
    _admin: AdminKey,
    service: IdentityServiceDep,
    pagination: Annotated[PaginationParams, Depends(pagination_params)],
) -> ListResponse[UserResponse]:
    users, total = await service.list_users(pagination.limit, pagination.offset)
    return ListResponse(
        data=[UserResponse.from_user(u) for u in users],
        meta=PaginationMeta(
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
        ),
    )


@router.delete("/users/{user_id}")
async def delete_user(
    _admin: AdminKey,
    service: IdentityServiceDep,
    user_id: UserIdParam,
) -> DataResponse[CascadeDeletionResponse]:
    """Delete a user with all sessions and provider links.

    Sessions whose revocation failed are counted in sessions_failed.
    """
    outcome = await service.cascade_delete_user(user_id)
    return DataResponse(data=CascadeDeletionResponse.from_outcome(outcome))
