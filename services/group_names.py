"""Deterministic mapping of identity-provider group names onto forum group names.

Forum group names are length- and charset-limited, so every identity-provider
group is mapped to a canonical name that can be recomputed on each login. Two
strategies exist:

``short``
    Alphanumerics only, truncated, prefixed, and always padded with a digest of
    the original name up to ``max_length``. Produces fixed-length names.

``long``
    Lowercase with ``_`` separators. Names that fit are returned untouched; longer
    ones are truncated and get ``_`` plus a digest so they fill ``max_length``.
"""

from __future__ import annotations

import hashlib
import re
from typing import Iterable, List, Optional

from core.settings import GroupNameSettings
from services.group_name_cache import GroupNameCache

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_SEPARATORS = re.compile(r"[- ]")
_DISALLOWED = re.compile(r"[^0-9a-z_]")

DIGEST_HEX_LENGTH = hashlib.md5().digest_size * 2


def name_digest(value: str) -> str:
    """Hex digest used to disambiguate shortened names; not a security boundary."""
    return hashlib.md5(value.encode("utf-8"), usedforsecurity=False).hexdigest()


class GroupNameCanonicalizer:
    def __init__(self, settings: GroupNameSettings, cache: Optional[GroupNameCache] = None) -> None:
        if settings.strategy not in ("short", "long"):
            raise ValueError(f"Unknown group naming strategy '{settings.strategy}'.")
        # short: prefix + truncated name + at least one digest character
        # long: prefix + truncated name + "_" + at least one digest character
        reserved = 1 if settings.strategy == "short" else 2
        if len(settings.prefix) + settings.truncate_length + reserved > settings.max_length:
            raise ValueError(
                "Group max length %d leaves no room for a hash suffix after prefix '%s' "
                "and truncate length %d." % (settings.max_length, settings.prefix, settings.truncate_length)
            )
        # short names shorter than the truncate length need up to max_length - len(prefix) digest characters
        if settings.strategy == "short":
            widest_suffix = settings.max_length - len(settings.prefix)
        else:
            widest_suffix = settings.max_length - len(settings.prefix) - settings.truncate_length - 1
        if widest_suffix > DIGEST_HEX_LENGTH:
            raise ValueError(
                "Group max length %d needs a %d character hash suffix; at most %d are available."
                % (settings.max_length, widest_suffix, DIGEST_HEX_LENGTH)
            )
        self.settings = settings
        self.cache = cache

    @property
    def prefix(self) -> str:
        return self.settings.prefix

    def canonicalize(self, name: str) -> str:
        if self.settings.strategy == "short":
            canonical = self._short(name)
        else:
            canonical = self._long(name)
        if self.cache is not None:
            self.cache.register(canonical, name)
        return canonical

    def canonicalize_all(self, names: Iterable[str]) -> List[str]:
        return [self.canonicalize(name) for name in names]

    def _short(self, name: str) -> str:
        stripped = _NON_ALNUM.sub("", name)[: self.settings.truncate_length]
        prefixed = self.settings.prefix + stripped
        hash_length = self.settings.max_length - len(prefixed)
        return prefixed + name_digest(name)[:hash_length]

    def _long(self, name: str) -> str:
        canonical = _DISALLOWED.sub("", _SEPARATORS.sub("_", name.lower()))
        prefixed = self.settings.prefix + canonical
        if len(prefixed) <= self.settings.max_length:
            return prefixed

        truncated = self.settings.prefix + canonical[: self.settings.truncate_length]
        hash_length = self.settings.max_length - len(truncated) - 1
        # Digest of the whole canonical name, not only the kept part, so names sharing a prefix differ.
        return f"{truncated}_{name_digest(canonical)[:hash_length]}"


__all__ = ["DIGEST_HEX_LENGTH", "GroupNameCanonicalizer", "name_digest"]
