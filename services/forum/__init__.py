"""Forum client."""

from __future__ import annotations

from .discourse import DiscourseApi, DiscourseClient, build_discourse_api

__all__ = ["DiscourseApi", "DiscourseClient", "build_discourse_api"]
