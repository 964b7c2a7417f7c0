from __future__ import annotations

import os
from typing import Dict, List, Optional, Set

import pytest

from core.settings import ForumAuthSettings, GroupNameSettings, build_settings
from schemas.api.sso import ForumGroup, ForumUser, IdentityUser
from services.request_context import RequestContext
from services.sso.errors import GroupCreationConflict, UpstreamApiError
from services.sso.payload import SsoPayload

TEST_SECRET = "d836444a9e4084d5b224a60c208dce14"

TEST_ENVIRON: Dict[str, str] = {
    "FORUM_SSO_SECRET": TEST_SECRET,
    "FORUM_SSO_URL": "https://sso.example.org/auth",
    "FORUM_SSO_CALLBACK_URL": "https://forum.example.org/session/sso_login",
    "CROWD_URL": "https://crowd.example.org/crowd",
    "CROWD_USERNAME": "forum-app",
    "CROWD_PASSWORD": "app-password",
    "CROWD_LOGIN_URL": "https://login.example.org/login",
    "DISCOURSE_URL": "https://forum.example.org",
    "DISCOURSE_API_USERNAME": "system",
    "DISCOURSE_API_KEY": "forum-key",
    "FORUM_GROUP_PREFIX": "crowd_",
    "FORUM_GROUP_STRATEGY": "long",
    "FORUM_GROUP_MAX_LENGTH": "20",
    "FORUM_GROUP_TRUNCATE_LENGTH": "8",
}

for _key, _value in TEST_ENVIRON.items():
    os.environ.setdefault(_key, _value)


class FakeIdentity:
    """In-memory identity provider keyed by session cookie."""

    def __init__(
        self,
        sessions: Optional[Dict[str, str]] = None,
        users: Optional[Dict[str, IdentityUser]] = None,
        groups: Optional[Dict[str, List[str]]] = None,
    ) -> None:
        self.sessions = dict(sessions or {})
        self.users = dict(users or {})
        self.groups = dict(groups or {})
        self.calls: List[str] = []

    def authenticate_cookie(self, context: RequestContext) -> Optional[str]:
        self.calls.append("authenticate_cookie")
        token = context.cookies.get("crowd.token_key")
        return self.sessions.get(token) if token else None

    def get_user(self, username: str) -> IdentityUser:
        self.calls.append("get_user")
        if username not in self.users:
            raise UpstreamApiError(f"unknown user {username}", service="identity", status_code=404)
        return self.users[username]

    def get_user_groups(self, username: str) -> List[str]:
        self.calls.append("get_user_groups")
        return list(self.groups.get(username, []))


class FakeForum:
    """In-memory forum with group membership bookkeeping."""

    def __init__(self, groups: Optional[Dict[str, int]] = None, memberships: Optional[Dict[str, Set[str]]] = None) -> None:
        self.group_ids: Dict[str, int] = dict(groups or {})
        self.memberships: Dict[str, Set[str]] = {name: set(users) for name, users in (memberships or {}).items()}
        self.synced: List[SsoPayload] = []
        self.created: List[str] = []
        self.fail_on: Set[str] = set()
        self.conflict_on: Set[str] = set()
        self.hidden: Set[str] = set()
        self._next_id = max(self.group_ids.values(), default=0) + 1

    def sync_user(self, payload: SsoPayload) -> ForumUser:
        self.synced.append(payload.copy())
        username = str(payload["username"] or payload["external_id"])
        groups = [ForumGroup(id=self.group_ids.get(name), name=name) for name, users in self.memberships.items() if username in users]
        return ForumUser(username=username, groups=groups)

    def group_id(self, name: str, *, refresh: bool = False) -> Optional[int]:
        if refresh:
            self.hidden.discard(name)
        if name in self.hidden:
            return None
        return self.group_ids.get(name)

    def create_group(self, name: str) -> int:
        if name in self.conflict_on:
            self.group_ids.setdefault(name, self._allocate())
            raise GroupCreationConflict("group exists", service="forum", status_code=422)
        self.created.append(name)
        self.group_ids[name] = self._allocate()
        return self.group_ids[name]

    def _allocate(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def add_group_user(self, name: str, username: str) -> None:
        if name in self.fail_on:
            raise UpstreamApiError(f"cannot add to {name}", service="forum", status_code=500)
        self.memberships.setdefault(name, set()).add(username)

    def remove_group_user(self, name: str, username: str) -> None:
        if name in self.fail_on:
            raise UpstreamApiError(f"cannot remove from {name}", service="forum", status_code=500)
        self.memberships.get(name, set()).discard(username)


@pytest.fixture()
def secret() -> str:
    return TEST_SECRET


@pytest.fixture()
def settings(tmp_path) -> ForumAuthSettings:
    environ = dict(TEST_ENVIRON, FORUM_GROUP_CACHE_FILE=str(tmp_path / "group_names.json"))
    return build_settings({}, environ)


@pytest.fixture()
def group_settings(tmp_path) -> GroupNameSettings:
    return GroupNameSettings(
        prefix="crowd_",
        strategy="long",
        max_length=20,
        truncate_length=8,
        cache_file=tmp_path / "group_names.json",
    )


@pytest.fixture()
def identity() -> FakeIdentity:
    return FakeIdentity(
        sessions={"valid-token": "jdoe"},
        users={
            "jdoe": IdentityUser.model_validate(
                {"name": "jdoe", "email": "jane.doe@example.org", "first-name": "Jane", "last-name": "Doe"}
            )
        },
        groups={"jdoe": ["Library Staff", "Reference & Instruction Services"]},
    )


@pytest.fixture()
def forum() -> FakeForum:
    return FakeForum(
        groups={"crowd_old_team": 1, "staff": 2},
        memberships={"crowd_old_team": {"Jane"}, "staff": {"Jane"}},
    )


@pytest.fixture()
def make_forum():
    return FakeForum


@pytest.fixture()
def make_identity():
    return FakeIdentity
