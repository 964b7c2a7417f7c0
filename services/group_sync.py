"""Reconcile a forum user's managed group memberships with the identity provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Tuple

from services.sso.errors import ForumAuthError, GroupCreationConflict, UpstreamApiError

logger = logging.getLogger(__name__)


class ForumGroupApi(Protocol):
    def group_id(self, name: str, *, refresh: bool = False) -> Optional[int]: ...

    def create_group(self, name: str) -> int: ...

    def add_group_user(self, name: str, username: str) -> None: ...

    def remove_group_user(self, name: str, username: str) -> None: ...


@dataclass(frozen=True)
class GroupSyncFailure:
    group: str
    action: str
    error: str


@dataclass
class GroupSyncReport:
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    failures: List[GroupSyncFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def diff_groups(desired: Iterable[str], current: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Return ``(to_add, to_remove)``, each sorted; the two lists never overlap."""
    desired_set = set(desired)
    current_set = set(current)
    return sorted(desired_set - current_set), sorted(current_set - desired_set)


class GroupSynchronizer:
    """Adds and removes a user from prefixed forum groups.

    Groups without the configured prefix are not managed here and are filtered
    out before diffing. Each group is processed independently: a failure is
    recorded in the report and the remaining groups are still processed.
    """

    def __init__(self, forum: ForumGroupApi, prefix: str) -> None:
        self.forum = forum
        self.prefix = prefix

    def filter_managed(self, names: Iterable[str]) -> List[str]:
        return [name for name in names if name.startswith(self.prefix)]

    def ensure_group(self, name: str) -> int:
        """Return the forum id of ``name``, creating the group when it is missing."""

        group_id = self.forum.group_id(name)
        if group_id is not None:
            return group_id
        try:
            return self.forum.create_group(name)
        except GroupCreationConflict:
            logger.debug("Group '%s' was created concurrently; resolving its id again", name)
        group_id = self.forum.group_id(name, refresh=True)
        if group_id is None:
            raise UpstreamApiError(f"The group '{name}' could not be created", service="forum")
        return group_id

    def reconcile(self, username: str, desired: Iterable[str], current: Iterable[str]) -> GroupSyncReport:
        to_add, to_remove = diff_groups(desired, self.filter_managed(current))
        report = GroupSyncReport()

        for group in to_add:
            logger.info("Adding user '%s' to group '%s'", username, group)
            try:
                self.ensure_group(group)
                self.forum.add_group_user(group, username)
            except ForumAuthError as exc:
                report.failures.append(GroupSyncFailure(group=group, action="add", error=str(exc)))
                continue
            report.added.append(group)

        for group in to_remove:
            logger.info("Removing user '%s' from group '%s'", username, group)
            try:
                self.forum.remove_group_user(group, username)
            except ForumAuthError as exc:
                report.failures.append(GroupSyncFailure(group=group, action="remove", error=str(exc)))
                continue
            report.removed.append(group)

        for failure in report.failures:
            logger.error(
                "Failed to %s user '%s' %s group '%s': %s",
                failure.action,
                username,
                "to" if failure.action == "add" else "from",
                failure.group,
                failure.error,
            )
        return report


__all__ = [
    "ForumGroupApi",
    "GroupSyncFailure",
    "GroupSyncReport",
    "GroupSynchronizer",
    "diff_groups",
]
