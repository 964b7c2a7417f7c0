"""Forum SSO endpoint."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import PlainTextResponse, RedirectResponse, Response

from services.forum_auth import AuthOutcome, ForumAuth
from services.request_context import RequestContext
from services.sso.errors import ForumAuthError
from web.deps import get_forum_auth, get_request_context

logger = logging.getLogger(__name__)

router = APIRouter(tags=["SSO"])

GENERIC_ERROR_MESSAGE = (
    "Error occurred during authentication. Please try again or contact "
    "an administrator, if the problem persists"
)
UNEXPECTED_REQUEST_MESSAGE = "Unexpected authentication request"
FAILED_LOGIN_MESSAGE = "Authentication failed. Please log in and try again."


def _to_response(outcome: AuthOutcome) -> Response:
    if outcome.redirect_url:
        return RedirectResponse(outcome.redirect_url, status_code=status.HTTP_302_FOUND)
    return PlainTextResponse(FAILED_LOGIN_MESSAGE, status_code=status.HTTP_401_UNAUTHORIZED)


@router.get(
    "/auth",
    summary="Forum single sign-on",
    description="Handles forum SSO requests (sso + sig) and returns from the identity provider (ssoPayload).",
)
def authenticate(
    sso: Optional[str] = Query(default=None),
    sig: Optional[str] = Query(default=None),
    sso_payload: Optional[str] = Query(default=None, alias="ssoPayload"),
    context: RequestContext = Depends(get_request_context),
    forum_auth: ForumAuth = Depends(get_forum_auth),
) -> Response:
    if sso_payload is not None and (sso is not None or sig is not None):
        return PlainTextResponse(UNEXPECTED_REQUEST_MESSAGE, status_code=status.HTTP_400_BAD_REQUEST)
    try:
        if sso is not None and sig is not None:
            outcome = forum_auth.process_request(sso, sig, context)
        elif sso_payload is not None:
            outcome = forum_auth.process_response(sso_payload, context)
        else:
            return PlainTextResponse(UNEXPECTED_REQUEST_MESSAGE, status_code=status.HTTP_400_BAD_REQUEST)
    except ForumAuthError:
        logger.exception("Authentication failed for client %s", context.ip or "-")
        return PlainTextResponse(GENERIC_ERROR_MESSAGE, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return _to_response(outcome)


__all__ = ["router", "GENERIC_ERROR_MESSAGE", "UNEXPECTED_REQUEST_MESSAGE"]
