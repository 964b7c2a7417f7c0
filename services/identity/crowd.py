"""Client for the Crowd identity provider REST API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from schemas.api.sso import (
    IdentityCookieConfig,
    IdentityGroupList,
    IdentitySession,
    IdentityUser,
)
from services.request_context import RequestContext
from services.sso.errors import UpstreamApiError

logger = logging.getLogger(__name__)

CROWD_API_PATH = "rest/usermanagement/1/"
SERVICE_NAME = "identity"

# 400: IP validation failed, 404: expired or unknown token
_INVALID_SESSION_STATUSES = frozenset({400, 404})

ModelT = TypeVar("ModelT", bound=BaseModel)


def _parse(model: Type[ModelT], data: Any, *, context: str) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.error("Unexpected %s response from identity provider: %s", context, exc)
        raise UpstreamApiError(f"Identity provider returned an invalid {context} response.", service=SERVICE_NAME) from exc


class CrowdClient:
    """Thin HTTP wrapper around the Crowd usermanagement endpoints."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._http = httpx.Client(
            base_url=f"{base_url.rstrip('/')}/{CROWD_API_PATH}",
            auth=(username, password),
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "CrowdClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request; transport failures are reported as :class:`UpstreamApiError`."""
        try:
            return self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Identity provider request %s %s failed: %s", method, path, exc)
            raise UpstreamApiError(f"Identity provider request failed: {exc}", service=SERVICE_NAME) from exc

    def parse_response(self, response: httpx.Response) -> Any:
        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"body": response.text}
            logger.warning(
                "Identity provider API error %s for %s: %s",
                response.status_code,
                response.request.url.path,
                payload,
            )
            raise UpstreamApiError(
                f"Identity provider responded with HTTP {response.status_code}",
                service=SERVICE_NAME,
                status_code=response.status_code,
                payload=payload if isinstance(payload, dict) else {"body": payload},
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamApiError("Identity provider responded with invalid JSON.", service=SERVICE_NAME) from exc

    def get_user(self, username: str) -> Dict[str, Any]:
        return self.parse_response(self.request("GET", "user", params={"username": username}))

    def get_user_nested_groups(self, username: str) -> Dict[str, Any]:
        return self.parse_response(self.request("GET", "user/group/nested", params={"username": username}))

    def post_session_token(self, token: str, validators: Mapping[str, str]) -> httpx.Response:
        """Validate a session token. The raw response is returned so callers can inspect the status."""
        body = {"validationFactors": [{"name": name, "value": value} for name, value in validators.items()]}
        return self.request("POST", f"session/{quote(token, safe='')}", json=body)

    def get_cookie_config(self) -> Dict[str, Any]:
        return self.parse_response(self.request("GET", "config/cookie"))


class CrowdApi:
    """Identity-provider operations used by the SSO flow."""

    def __init__(self, client: CrowdClient) -> None:
        self.client = client
        self._cookie_config: Optional[IdentityCookieConfig] = None

    def cookie_config(self) -> IdentityCookieConfig:
        if self._cookie_config is None:
            self._cookie_config = _parse(IdentityCookieConfig, self.client.get_cookie_config(), context="cookie config")
        return self._cookie_config

    def _session_token(self, context: RequestContext) -> Optional[str]:
        name = self.cookie_config().name
        for candidate in (name, name.replace(".", "_")):
            token = context.cookies.get(candidate)
            if token:
                return token
        return None

    def authenticate_cookie(self, context: RequestContext) -> Optional[str]:
        """Return the username owning the request's session cookie, or ``None``.

        Missing cookies, expired tokens and remote-address mismatches yield
        ``None``; every other unexpected answer raises :class:`UpstreamApiError`.
        """

        token = self._session_token(context)
        if token is None:
            return None

        response = self.client.post_session_token(token, {"remote_address": context.ip or ""})
        if response.status_code in _INVALID_SESSION_STATUSES:
            logger.debug("Identity session rejected with HTTP %s", response.status_code)
            return None
        session = _parse(IdentitySession, self.client.parse_response(response), context="session")

        if session.token != token:
            raise UpstreamApiError(
                "Returned session token does not match the cookie token",
                service=SERVICE_NAME,
                status_code=response.status_code,
            )
        return session.user.name

    def get_user(self, username: str) -> IdentityUser:
        return _parse(IdentityUser, self.client.get_user(username), context="user")

    def get_user_groups(self, username: str) -> List[str]:
        groups = _parse(IdentityGroupList, self.client.get_user_nested_groups(username), context="group list")
        return [group.name for group in groups.groups]


def build_crowd_api(
    base_url: str,
    username: str,
    password: str,
    *,
    timeout: float = 10.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> CrowdApi:
    return CrowdApi(CrowdClient(base_url, username, password, timeout=timeout, transport=transport))


__all__ = ["CrowdApi", "CrowdClient", "build_crowd_api"]
