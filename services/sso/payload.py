"""Signed SSO payload codec used by the forum single sign-on protocol.

A signed payload travels as the query string ``sso=<base64>&sig=<hex>``. The
base64 part wraps a URL-encoded attribute list, and ``sig`` is the hex
HMAC-SHA256 of the base64 text under the shared SSO secret.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl, quote, urlencode

from services.sso.errors import InvalidAttribute, MalformedPayload, SignatureMismatch

AttributeValue = Optional[Union[str, bool]]

FIXED_ATTRIBUTES: Tuple[str, ...] = (
    "nonce",
    "name",
    "username",
    "email",
    "avatar_url",
    "avatar_force_update",
    "about_me",
    "external_id",
    "return_sso_url",
    "admin",
    "moderator",
)
BOOLEAN_ATTRIBUTES = frozenset({"avatar_force_update", "admin", "moderator"})
CUSTOM_FIELD_PREFIX = "custom."


def build_query(params: Union[Mapping[str, str], Iterable[Tuple[str, str]]]) -> str:
    """URL-encode ``params`` with RFC 3986 escaping (spaces as ``%20``)."""
    items = list(params.items()) if isinstance(params, Mapping) else list(params)
    return urlencode(items, quote_via=quote, safe="")


def decode_boolean(raw: str) -> Optional[bool]:
    """Map the wire literals ``"true"``/``"false"`` to booleans.

    Anything else is reported as ``None`` so the attribute is treated as absent.
    """
    if raw == "true":
        return True
    if raw == "false":
        return False
    return None


def encode_value(value: Union[str, bool]) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class SsoPayload:
    """Attribute record carried by a signed SSO payload.

    Fixed attributes are addressed by name (``payload["email"]``); custom fields
    either through :attr:`custom_fields` or with the ``custom.`` wire prefix
    (``payload["custom.department"]``). Any other key raises
    :class:`InvalidAttribute`. Absent attributes read as ``None``.
    """

    __slots__ = ("secret", "custom_fields", "_values")

    def __init__(
        self,
        secret: str,
        attributes: Optional[Mapping[str, AttributeValue]] = None,
        custom_fields: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.secret = secret
        self._values: Dict[str, AttributeValue] = dict.fromkeys(FIXED_ATTRIBUTES)
        self.custom_fields: Dict[str, str] = dict(custom_fields or {})
        for key, value in (attributes or {}).items():
            self[key] = value

    @staticmethod
    def _custom_key(key: str) -> Optional[str]:
        if key.startswith(CUSTOM_FIELD_PREFIX):
            field = key[len(CUSTOM_FIELD_PREFIX):]
            if field:
                return field
        return None

    def _validate(self, key: str) -> Optional[str]:
        custom = self._custom_key(key) if isinstance(key, str) else None
        if custom is None and key not in self._values:
            raise InvalidAttribute(f"Invalid SSO attribute '{key}'")
        return custom

    def __getitem__(self, key: str) -> AttributeValue:
        custom = self._validate(key)
        if custom is not None:
            return self.custom_fields.get(custom)
        return self._values[key]

    def __setitem__(self, key: str, value: AttributeValue) -> None:
        custom = self._validate(key)
        if custom is not None:
            if value is None:
                self.custom_fields.pop(custom, None)
            else:
                self.custom_fields[custom] = encode_value(value)
            return
        self._values[key] = value

    def __delitem__(self, key: str) -> None:
        self[key] = None

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            raise InvalidAttribute(f"Invalid SSO attribute '{key}'")
        return self[key] is not None

    def __iter__(self) -> Iterator[str]:
        return iter(self.attributes())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SsoPayload):
            return NotImplemented
        return (
            self.secret == other.secret
            and self._values == other._values
            and list(self.custom_fields.items()) == list(other.custom_fields.items())
        )

    def __repr__(self) -> str:
        return f"SsoPayload({self.attributes()!r}, custom_fields={self.custom_fields!r})"

    def get(self, key: str, default: AttributeValue = None) -> AttributeValue:
        value = self[key]
        return default if value is None else value

    def attributes(self) -> Dict[str, Union[str, bool]]:
        """Return the non-absent fixed attributes in declaration order."""
        return {key: value for key, value in self._values.items() if value is not None}

    def copy(self) -> "SsoPayload":
        return SsoPayload(self.secret, self.attributes(), self.custom_fields)


def sign(body: str, secret: str) -> str:
    """Return the hex HMAC-SHA256 of ``body`` under ``secret``."""
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def get_unsigned_payload(payload: SsoPayload) -> str:
    """Serialize ``payload`` into the URL-encoded body that gets base64-wrapped."""
    pairs = [(key, encode_value(value)) for key, value in payload.attributes().items()]
    pairs.extend((f"{CUSTOM_FIELD_PREFIX}{key}", value) for key, value in payload.custom_fields.items())
    return build_query(pairs)


def encode_signed(
    payload: Union[SsoPayload, Mapping[str, AttributeValue]],
    secret: Optional[str] = None,
) -> str:
    """Return ``sso=<base64>&sig=<hex>`` for ``payload``.

    ``secret`` defaults to the secret the payload was created with. Plain
    mappings are accepted and validated like :class:`SsoPayload` attributes.
    """

    if not isinstance(payload, SsoPayload):
        if secret is None:
            raise ValueError("A secret is required to sign a plain attribute mapping.")
        payload = SsoPayload(secret, payload)
    key = payload.secret if secret is None else secret
    body = base64.b64encode(get_unsigned_payload(payload).encode("utf-8")).decode("ascii")
    return build_query([("sso", body), ("sig", sign(body, key))])


def parse_signed(raw: str, secret: str) -> SsoPayload:
    """Verify and decode a ``sso=...&sig=...`` query string.

    Raises :class:`MalformedPayload` when either parameter is missing or the body
    cannot be decoded, and :class:`SignatureMismatch` when the signature does not
    match. The signature is checked before anything inside ``sso`` is read.
    """

    params = dict(parse_qsl(raw or "", keep_blank_values=True))
    if "sso" not in params or "sig" not in params:
        raise MalformedPayload("SSO payload requires both 'sso' and 'sig' parameters.")

    encoded = params["sso"]
    expected = sign(encoded, secret)
    if not hmac.compare_digest(expected.encode("utf-8"), params["sig"].encode("utf-8")):
        raise SignatureMismatch("Bad signature for payload")

    try:
        body = base64.b64decode(encoded).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise MalformedPayload("SSO payload body is not valid base64.") from exc

    decoded = dict(parse_qsl(body, keep_blank_values=True))
    payload = SsoPayload(secret)
    for attribute in FIXED_ATTRIBUTES:
        if attribute not in decoded:
            continue
        value = decoded[attribute]
        payload[attribute] = decode_boolean(value) if attribute in BOOLEAN_ATTRIBUTES else value

    for key, value in decoded.items():
        if key.startswith(CUSTOM_FIELD_PREFIX):
            payload.custom_fields[key[len(CUSTOM_FIELD_PREFIX):]] = value

    return payload


__all__ = [
    "BOOLEAN_ATTRIBUTES",
    "CUSTOM_FIELD_PREFIX",
    "FIXED_ATTRIBUTES",
    "SsoPayload",
    "build_query",
    "decode_boolean",
    "encode_signed",
    "encode_value",
    "get_unsigned_payload",
    "parse_signed",
    "sign",
]
