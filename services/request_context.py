"""Per-request data the SSO flow needs from the incoming HTTP request."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional


@dataclass(frozen=True)
class RequestContext:
    ip: Optional[str] = None
    cookies: Mapping[str, str] = field(default_factory=dict)


__all__ = ["RequestContext"]
