"""Exception types raised by the forum SSO bridge."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ForumAuthError(Exception):
    """Base error for every failure of the SSO flow."""

    code = "forum_auth.error"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        if code:
            self.code = code


class MalformedPayload(ForumAuthError):
    """Required SSO parameters are missing or cannot be decoded."""

    code = "sso.malformed_payload"


class SignatureMismatch(ForumAuthError):
    """The supplied signature does not match the payload."""

    code = "sso.signature_mismatch"


class InvalidAttribute(ForumAuthError, KeyError):
    """An SSO attribute outside the known attribute set was accessed."""

    code = "sso.invalid_attribute"

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class UpstreamApiError(ForumAuthError):
    """The identity provider or the forum answered with an unexpected response."""

    code = "upstream.unexpected_response"

    def __init__(
        self,
        message: str,
        *,
        service: str,
        status_code: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code
        self.payload = payload or {}


class GroupCreationConflict(UpstreamApiError):
    """The forum refused to create a group because it already exists."""

    code = "forum.group_exists"


__all__ = [
    "ForumAuthError",
    "GroupCreationConflict",
    "InvalidAttribute",
    "MalformedPayload",
    "SignatureMismatch",
    "UpstreamApiError",
]
