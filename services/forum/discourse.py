"""Client for the Discourse forum admin API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl

import httpx
from pydantic import ValidationError

from schemas.api.sso import ForumGroup, ForumUser
from services.sso.errors import GroupCreationConflict, UpstreamApiError
from services.sso.payload import SsoPayload, encode_signed

logger = logging.getLogger(__name__)

SERVICE_NAME = "forum"
SYNCED_ATTRIBUTES = ("name", "username", "email", "external_id")
_GROUP_CONFLICT_STATUS = 422
_MAX_GROUP_PAGES = 100


class DiscourseClient:
    """Thin HTTP wrapper around the Discourse endpoints used for SSO sync."""

    def __init__(
        self,
        base_url: str,
        api_username: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        verify: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._http = httpx.Client(
            base_url=f"{base_url.rstrip('/')}/",
            headers={
                "Accept": "application/json",
                "Api-Key": api_key,
                "Api-Username": api_username,
            },
            timeout=timeout,
            verify=verify,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "DiscourseClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Forum request %s %s failed: %s", method, path, exc)
            raise UpstreamApiError(f"Forum request failed: {exc}", service=SERVICE_NAME) from exc

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"body": response.text}
            if not isinstance(payload, dict):
                payload = {"body": payload}
            error_cls = UpstreamApiError
            if method == "POST" and path.startswith("admin/groups") and response.status_code == _GROUP_CONFLICT_STATUS:
                error_cls = GroupCreationConflict
            else:
                logger.warning("Forum API error %s for %s %s: %s", response.status_code, method, path, payload)
            raise error_cls(
                f"Forum responded with HTTP {response.status_code}",
                service=SERVICE_NAME,
                status_code=response.status_code,
                payload=payload,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamApiError("Forum responded with invalid JSON.", service=SERVICE_NAME) from exc

    def create_group(self, name: str) -> Dict[str, Any]:
        if not name:
            raise ValueError("Group requires a name")
        return self._request("POST", "admin/groups.json", json={"group": {"name": name}})

    def groups(self) -> List[Dict[str, Any]]:
        """Return every group, following the paginated ``groups.json`` listing."""
        collected: List[Dict[str, Any]] = []
        for page in range(_MAX_GROUP_PAGES):
            payload = self._request("GET", "groups.json", params={"page": page})
            if isinstance(payload, list):
                return payload
            batch = payload.get("groups") or []
            collected.extend(batch)
            total = payload.get("total_rows_groups")
            if not batch or (total is not None and len(collected) >= int(total)):
                break
        return collected

    def group_add(self, group_id: int, usernames: List[str]) -> Dict[str, Any]:
        return self._request("PUT", f"groups/{group_id}/members.json", json={"usernames": ",".join(usernames)})

    def group_remove(self, group_id: int, username: str) -> Dict[str, Any]:
        return self._request("DELETE", f"groups/{group_id}/members.json", params={"username": username})

    def sync_sso(self, params: Dict[str, str]) -> Dict[str, Any]:
        return self._request("POST", "admin/users/sync_sso", json=params)


class DiscourseApi:
    """Forum operations used by the SSO flow.

    Group ids are looked up from a listing that is fetched once and reused until
    a caller asks for a refresh.
    """

    def __init__(self, client: DiscourseClient, sso_secret: str) -> None:
        self.client = client
        self.sso_secret = sso_secret
        self._group_ids: Optional[Dict[str, int]] = None

    def sync_user(self, payload: SsoPayload) -> ForumUser:
        outbound = SsoPayload(self.sso_secret, {key: payload[key] for key in SYNCED_ATTRIBUTES})
        params = dict(parse_qsl(encode_signed(outbound)))
        data = self.client.sync_sso(params)
        try:
            return ForumUser.model_validate(data)
        except ValidationError as exc:
            logger.error("Unexpected SSO sync response from forum: %s", exc)
            raise UpstreamApiError("Forum returned an invalid user record.", service=SERVICE_NAME) from exc

    def group_ids(self, *, refresh: bool = False) -> Dict[str, int]:
        if self._group_ids is None or refresh:
            ids: Dict[str, int] = {}
            for raw in self.client.groups():
                try:
                    group = ForumGroup.model_validate(raw)
                except ValidationError:
                    logger.debug("Skipping malformed group entry %s", raw)
                    continue
                if group.id is not None:
                    ids[group.name] = group.id
            self._group_ids = ids
        return self._group_ids

    def group_id(self, name: str, *, refresh: bool = False) -> Optional[int]:
        return self.group_ids(refresh=refresh).get(name)

    def create_group(self, name: str) -> int:
        created = self.client.create_group(name)
        basic = created.get("basic_group") or {}
        if basic.get("id") is None:
            group_id = self.group_id(name, refresh=True)
            if group_id is None:
                raise UpstreamApiError(f"The group '{name}' was not created", service=SERVICE_NAME)
            return group_id
        group_id = int(basic["id"])
        self.group_ids()[basic.get("name") or name] = group_id
        logger.info("Created forum group '%s' (id=%s)", name, group_id)
        return group_id

    def _require_group_id(self, name: str) -> int:
        group_id = self.group_id(name)
        if group_id is None:
            raise UpstreamApiError(f"The group '{name}' does not exist", service=SERVICE_NAME)
        return group_id

    def add_group_user(self, name: str, username: str) -> None:
        self.client.group_add(self._require_group_id(name), [username])

    def remove_group_user(self, name: str, username: str) -> None:
        self.client.group_remove(self._require_group_id(name), username)


def build_discourse_api(
    base_url: str,
    api_username: str,
    api_key: str,
    sso_secret: str,
    *,
    timeout: float = 10.0,
    verify: bool = True,
    transport: Optional[httpx.BaseTransport] = None,
) -> DiscourseApi:
    client = DiscourseClient(base_url, api_username, api_key, timeout=timeout, verify=verify, transport=transport)
    return DiscourseApi(client, sso_secret)


__all__ = ["DiscourseApi", "DiscourseClient", "build_discourse_api"]
