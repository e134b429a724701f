"""Provider linking endpoints.

Linking attaches a GitHub or Google identity to the signed-in account so it
can later be used to sign in. Unlinking refuses to remove the account's
last sign-in method.
"""

from fastapi import APIRouter, Request, Response
from fastapi.responses import RedirectResponse

from gatekeep.api.deps import CurrentUser, IdentityServiceDep
from gatekeep.api.oauth_redirect import frontend_redirect, link_callback_url, run_callback
from gatekeep.core.auth import apply_cookie
from gatekeep.core.config import settings
from gatekeep.core.responses import DataResponse
from gatekeep.models.provider_link import ProviderLink
from gatekeep.schemas.identity import ProviderLinkResponse

router = APIRouter()


@router.get("")
async def list_providers(
    user: CurrentUser,
    service: IdentityServiceDep,
) -> DataResponse[list[ProviderLinkResponse]]:
    links = await service.list_providers(user.id)
    return DataResponse(data=[ProviderLinkResponse.from_link(link) for link in links])


# ===================================================================
# GET /providers/{provider}/link
# ===================================================================


@router.get("/{provider}/link")
async def link_initiate(
    provider: str,
    _user: CurrentUser,
    service: IdentityServiceDep,
) -> RedirectResponse:
    """Start linking: redirect to the provider with a fresh signed state."""
    url, state_cookie = service.begin_oauth(provider, link_callback_url(provider))
    response = RedirectResponse(url=url, status_code=302)
    apply_cookie(response, state_cookie)
    return response


# ===================================================================
# GET /providers/{provider}/callback
# ===================================================================


@router.get("/{provider}/callback")
async def link_callback(
    provider: str,
    request: Request,
    service: IdentityServiceDep,
    code: str | None = None,
    state: str | None = None,
) -> RedirectResponse:
    """Complete linking and return to the frontend.

    The session is resolved inside the callback operation so that a lapsed
    session still ends in a redirect that clears the state cookie.
    Success lands on /?linked=<provider>; failure on /?error=<code>.
    """

    async def link_for_session() -> ProviderLink:
        _session, user = await service.resolve_session(
            request.cookies.get(settings.session_cookie_name)
        )
        return await service.oauth_link(
            user.id,
            provider,
            code=code,
            state=state,
            cookies=request.cookies,
            redirect_uri=link_callback_url(provider),
        )

    link, error = await run_callback(
        link_for_session(),
        provider=provider,
        fallback_error="link_failed",
    )
    clear_state = service.clear_state_cookie()
    if link is None:
        return frontend_redirect("/", [clear_state], error=error or "link_failed")
    return frontend_redirect("/", [clear_state], linked=provider)


# ===================================================================
# DELETE /providers/{provider}
# ===================================================================


@router.delete("/{provider}", status_code=204)
async def unlink(
    provider: str,
    user: CurrentUser,
    service: IdentityServiceDep,
) -> Response:
    await service.oauth_unlink(user.id, provider)
    return Response(status_code=204)
