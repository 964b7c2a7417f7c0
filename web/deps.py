"""Shared FastAPI dependencies."""

from __future__ import annotations

from typing import Generator

from fastapi import Depends, Request

from core.settings import ForumAuthSettings, load_settings
from services.forum import build_discourse_api
from services.forum_auth import ForumAuth
from services.group_name_cache import GroupNameCache
from services.group_names import GroupNameCanonicalizer
from services.identity import build_crowd_api
from services.request_context import RequestContext


def get_settings() -> ForumAuthSettings:
    return load_settings()


def get_request_context(request: Request) -> RequestContext:
    client_host = request.client.host if request.client else None
    return RequestContext(
        ip=client_host,
        cookies=dict(request.cookies),
    )


def get_group_cache(
    request: Request,
    settings: ForumAuthSettings = Depends(get_settings),
) -> GroupNameCache:
    """Return the process-wide group name cache, opening it on first use."""
    cache = getattr(request.app.state, "group_cache", None)
    if cache is None:
        cache = GroupNameCache(settings.groups.cache_file).open()
        request.app.state.group_cache = cache
    return cache


def get_forum_auth(
    settings: ForumAuthSettings = Depends(get_settings),
    cache: GroupNameCache = Depends(get_group_cache),
) -> Generator[ForumAuth, None, None]:
    """Build a per-request SSO orchestrator and release its HTTP clients afterwards."""

    identity = build_crowd_api(
        settings.crowd_url,
        settings.crowd_username,
        settings.crowd_password,
        timeout=settings.http_timeout,
    )
    forum = build_discourse_api(
        settings.discourse_url,
        settings.discourse_username,
        settings.discourse_key,
        settings.sso_secret,
        timeout=settings.http_timeout,
        verify=settings.discourse_verify_tls,
    )
    canonicalizer = GroupNameCanonicalizer(settings.groups, cache)
    try:
        yield ForumAuth(settings, identity, forum, canonicalizer=canonicalizer)
    finally:
        identity.client.close()
        forum.client.close()
        cache.flush()


__all__ = ["get_forum_auth", "get_group_cache", "get_request_context", "get_settings"]
