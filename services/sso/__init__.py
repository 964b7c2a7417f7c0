"""Signed SSO payload handling."""

from __future__ import annotations

from .errors import (
    ForumAuthError,
    GroupCreationConflict,
    InvalidAttribute,
    MalformedPayload,
    SignatureMismatch,
    UpstreamApiError,
)
from .payload import (
    FIXED_ATTRIBUTES,
    SsoPayload,
    build_query,
    encode_signed,
    get_unsigned_payload,
    parse_signed,
    sign,
)

__all__ = [
    "FIXED_ATTRIBUTES",
    "ForumAuthError",
    "GroupCreationConflict",
    "InvalidAttribute",
    "MalformedPayload",
    "SignatureMismatch",
    "SsoPayload",
    "UpstreamApiError",
    "build_query",
    "encode_signed",
    "get_unsigned_payload",
    "parse_signed",
    "sign",
]
