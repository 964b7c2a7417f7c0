"""Identity provider client."""

from __future__ import annotations

from .crowd import CrowdApi, CrowdClient, build_crowd_api

__all__ = ["CrowdApi", "CrowdClient", "build_crowd_api"]
