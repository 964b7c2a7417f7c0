"""Forum single sign-on backed by the identity provider's session cookie.

The forum sends the browser here with a signed ``sso``/``sig`` pair. When the
browser already holds a valid identity-provider session the user is logged in
straight away; otherwise the browser is sent to the identity provider's login
page and comes back with the original payload in ``ssoPayload``. A successful
login syncs the profile and group memberships to the forum and redirects back
to the forum with a re-signed payload.
"""

from __future__ import annotations

import base64
import binascii
import enum
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

from core.settings import ForumAuthSettings
from schemas.api.sso import ForumUser, IdentityUser
from services.group_names import GroupNameCanonicalizer
from services.group_sync import ForumGroupApi, GroupSynchronizer, GroupSyncReport
from services.request_context import RequestContext
from services.sso.errors import MalformedPayload
from services.sso.payload import SsoPayload, build_query, encode_signed, parse_signed

logger = logging.getLogger(__name__)

PRIVILEGED_ATTRIBUTES = ("admin", "moderator")


class IdentityProvider(Protocol):
    def authenticate_cookie(self, context: RequestContext) -> Optional[str]: ...

    def get_user(self, username: str) -> IdentityUser: ...

    def get_user_groups(self, username: str) -> List[str]: ...


class ForumProvider(ForumGroupApi, Protocol):
    def sync_user(self, payload: SsoPayload) -> ForumUser: ...


class AuthState(str, enum.Enum):
    AUTHENTICATED = "authenticated"
    REDIRECT_TO_IDENTITY_PROVIDER = "redirect_to_identity_provider"
    FAILED = "failed"


@dataclass
class AuthOutcome:
    state: AuthState
    redirect_url: Optional[str] = None
    identity_username: Optional[str] = None
    forum_username: Optional[str] = None
    groups: Optional[GroupSyncReport] = None

    @property
    def success(self) -> bool:
        return self.state is AuthState.AUTHENTICATED


def compose_display_name(first_name: str, last_name: str) -> str:
    """Join first and last name, skipping a last name the first name already ends with."""
    first = (first_name or "").strip()
    last = (last_name or "").strip()
    if not last or first.lower().endswith(last.lower()):
        return first
    if not first:
        return last
    return f"{first} {last}"


def append_query(url: str, query: str) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"


class ForumAuth:
    """Drives one SSO round trip between the forum and the identity provider."""

    def __init__(
        self,
        settings: ForumAuthSettings,
        identity: IdentityProvider,
        forum: ForumProvider,
        *,
        canonicalizer: Optional[GroupNameCanonicalizer] = None,
        synchronizer: Optional[GroupSynchronizer] = None,
    ) -> None:
        self.settings = settings
        self.identity = identity
        self.forum = forum
        self.canonicalizer = canonicalizer or GroupNameCanonicalizer(settings.groups)
        self.synchronizer = synchronizer or GroupSynchronizer(forum, self.canonicalizer.prefix)

    def _log(self, context: RequestContext, message: str, *args: Any) -> None:
        logger.info(message + " (%s)", *args, context.ip or "-")

    def process_request(self, sso: str, sig: str, context: Optional[RequestContext] = None) -> AuthOutcome:
        """Handle a forum-initiated ``sso``/``sig`` request."""

        context = context or RequestContext()
        self._log(context, "Received authentication request")

        payload = parse_signed(build_query([("sso", sso), ("sig", sig)]), self.settings.sso_secret)
        username = self.identity.authenticate_cookie(context)
        if username is not None:
            return self.login_user(username, payload, context)

        encoded = base64.b64encode(encode_signed(payload).encode("utf-8")).decode("ascii")
        return_url = append_query(self.settings.sso_url, build_query([("ssoPayload", encoded)]))
        redirect_url = append_query(self.settings.crowd_login_url, build_query([("redirectTo", return_url)]))

        self._log(context, "Redirecting to authentication portal")
        return AuthOutcome(state=AuthState.REDIRECT_TO_IDENTITY_PROVIDER, redirect_url=redirect_url)

    def process_response(self, sso_payload: str, context: Optional[RequestContext] = None) -> AuthOutcome:
        """Handle the browser returning from the identity provider's login page."""

        context = context or RequestContext()
        self._log(context, "Received authentication response")

        try:
            raw = base64.b64decode(sso_payload).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise MalformedPayload("ssoPayload is not valid base64.") from exc

        payload = parse_signed(raw, self.settings.sso_secret)
        username = self.identity.authenticate_cookie(context)
        if username is None:
            self._log(context, "Authentication failed: no identity provider session")
            return AuthOutcome(state=AuthState.FAILED)

        return self.login_user(username, payload, context)

    def login_user(
        self,
        username: str,
        payload: SsoPayload,
        context: Optional[RequestContext] = None,
    ) -> AuthOutcome:
        context = context or RequestContext()
        profile = self.identity.get_user(username)

        # Privilege flags never pass through from the inbound payload.
        for attribute in PRIVILEGED_ATTRIBUTES:
            del payload[attribute]

        payload["external_id"] = username
        payload["email"] = profile.email
        payload["username"] = profile.firstName
        payload["name"] = compose_display_name(profile.firstName, profile.lastName)

        forum_user = self.forum.sync_user(payload)
        self._log(context, "Authenticated '%s' to '%s'", username, forum_user.username)

        desired = self.canonicalizer.canonicalize_all(self.identity.get_user_groups(username))
        report = self.synchronizer.reconcile(forum_user.username, desired, forum_user.group_names)
        if not report.ok:
            self._log(
                context,
                "Group sync for '%s' finished with %d failure(s)",
                forum_user.username,
                len(report.failures),
            )

        redirect_url = append_query(self.settings.sso_callback_url, encode_signed(payload))
        return AuthOutcome(
            state=AuthState.AUTHENTICATED,
            redirect_url=redirect_url,
            identity_username=username,
            forum_username=forum_user.username,
            groups=report,
        )


__all__ = [
    "AuthOutcome",
    "AuthState",
    "ForumAuth",
    "ForumProvider",
    "IdentityProvider",
    "append_query",
    "compose_display_name",
]
