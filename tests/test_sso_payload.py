"""Tests for the signed SSO payload codec."""

from __future__ import annotations

import base64
import hashlib
import hmac
from urllib.parse import parse_qs, parse_qsl

import pytest

from services.sso import payload as sso_payload
from services.sso.errors import InvalidAttribute, MalformedPayload, SignatureMismatch
from services.sso.payload import SsoPayload, encode_signed, get_unsigned_payload, parse_signed, sign


def _raw_signed(body: str, secret: str) -> str:
    encoded = base64.b64encode(body.encode("utf-8")).decode("ascii")
    return sso_payload.build_query([("sso", encoded), ("sig", sign(encoded, secret))])


def test_sign_is_hex_hmac_sha256(secret: str) -> None:
    expected = hmac.new(secret.encode(), b"bm9uY2U9YWJj", hashlib.sha256).hexdigest()
    assert sign("bm9uY2U9YWJj", secret) == expected
    assert sign("bm9uY2U9YWJj", secret) == sign("bm9uY2U9YWJj", secret)
    assert sign("bm9uY2U9YWJj", "other-secret") != expected


def test_unsigned_payload_orders_fixed_attributes_then_custom_fields(secret: str) -> None:
    payload = SsoPayload(secret)
    payload["moderator"] = False
    payload["email"] = "jane.doe@example.org"
    payload["nonce"] = "cb68251eefb5211e58c00ff1395f0c0b"
    payload["custom.department"] = "Reference Services"
    payload.custom_fields["building"] = "Main"
    payload["admin"] = True

    body = get_unsigned_payload(payload)

    assert body == (
        "nonce=cb68251eefb5211e58c00ff1395f0c0b"
        "&email=jane.doe%40example.org"
        "&admin=true"
        "&moderator=false"
        "&custom.department=Reference%20Services"
        "&custom.building=Main"
    )


def test_round_trip_preserves_attributes_and_custom_fields(secret: str) -> None:
    attributes = {
        "nonce": "cb68251eefb5211e58c00ff1395f0c0b",
        "name": "Jane Doe",
        "email": "jane+forum@example.org",
        "avatar_force_update": True,
        "about_me": "Line one & line two = fun",
        "return_sso_url": "https://forum.example.org/session/sso_login?a=1&b=2",
        "custom.team": "Cataloguing",
    }

    decoded = parse_signed(encode_signed(attributes, secret), secret)

    assert decoded.attributes() == {key: value for key, value in attributes.items() if not key.startswith("custom.")}
    assert decoded.custom_fields == {"team": "Cataloguing"}
    assert decoded["custom.team"] == "Cataloguing"
    assert decoded.secret == secret


def test_repeated_encode_decode_is_stable(secret: str) -> None:
    payload = SsoPayload(secret, {"nonce": "abc", "username": "jdoe", "admin": False})
    first = encode_signed(payload)
    second = encode_signed(parse_signed(first, secret))
    assert first == second


def test_parse_signed_decodes_forum_generated_payload(secret: str) -> None:
    raw = _raw_signed("nonce=cb6825&return_sso_url=https%3A%2F%2Fforum.example.org%2Fsession%2Fsso_login", secret)

    payload = parse_signed(raw, secret)

    assert payload["nonce"] == "cb6825"
    assert payload["return_sso_url"] == "https://forum.example.org/session/sso_login"
    assert payload["email"] is None
    assert "email" not in payload


@pytest.mark.parametrize("raw_value, expected", [("true", True), ("false", False), ("1", None), ("TRUE", None), ("", None)])
def test_boolean_attributes_only_accept_exact_literals(secret: str, raw_value: str, expected) -> None:
    payload = parse_signed(_raw_signed(f"nonce=n&admin={raw_value}&avatar_force_update={raw_value}", secret), secret)
    assert payload["admin"] is expected
    assert payload["avatar_force_update"] is expected


def test_unknown_keys_in_body_are_ignored(secret: str) -> None:
    payload = parse_signed(_raw_signed("nonce=n&is_staff=true", secret), secret)
    assert payload.attributes() == {"nonce": "n"}
    assert payload.custom_fields == {}


@pytest.mark.parametrize("raw", ["", "sso=abc", "sig=abc", "foo=bar&baz=1"])
def test_missing_parameters_are_malformed(secret: str, raw: str) -> None:
    with pytest.raises(MalformedPayload):
        parse_signed(raw, secret)


def test_signature_from_other_secret_is_rejected(secret: str) -> None:
    raw = encode_signed({"nonce": "abc"}, "another-secret")
    with pytest.raises(SignatureMismatch):
        parse_signed(raw, secret)


def test_tampering_with_body_or_signature_is_detected(secret: str) -> None:
    raw = encode_signed({"nonce": "abc", "email": "jane@example.org", "admin": False}, secret)
    params = dict(parse_qsl(raw))

    for index in range(len(params["sso"])):
        original = params["sso"][index]
        replacement = "A" if original != "A" else "B"
        tampered_sso = params["sso"][:index] + replacement + params["sso"][index + 1:]
        tampered = sso_payload.build_query([("sso", tampered_sso), ("sig", params["sig"])])
        with pytest.raises(SignatureMismatch):
            parse_signed(tampered, secret)

    for index in range(len(params["sig"])):
        original = params["sig"][index]
        replacement = "0" if original != "0" else "1"
        tampered_sig = params["sig"][:index] + replacement + params["sig"][index + 1:]
        tampered = sso_payload.build_query([("sso", params["sso"]), ("sig", tampered_sig)])
        with pytest.raises(SignatureMismatch):
            parse_signed(tampered, secret)


def test_signature_is_checked_before_body_is_decoded(secret: str) -> None:
    raw = sso_payload.build_query([("sso", "!!!not-base64!!!"), ("sig", "deadbeef")])
    with pytest.raises(SignatureMismatch):
        parse_signed(raw, secret)


def test_undecodable_body_with_valid_signature_is_malformed(secret: str) -> None:
    body = "////"
    raw = sso_payload.build_query([("sso", body), ("sig", sign(body, secret))])
    with pytest.raises(MalformedPayload):
        parse_signed(raw, secret)


def test_unknown_attribute_access_raises(secret: str) -> None:
    payload = SsoPayload(secret)
    with pytest.raises(InvalidAttribute):
        payload["is_staff"]
    with pytest.raises(InvalidAttribute):
        payload["is_staff"] = "true"
    with pytest.raises(InvalidAttribute):
        del payload["groups"]
    with pytest.raises(InvalidAttribute):
        SsoPayload(secret, {"trust_level": "4"})


def test_deleting_attribute_makes_it_absent(secret: str) -> None:
    payload = SsoPayload(secret, {"admin": True, "moderator": True, "nonce": "n"})
    del payload["admin"]
    payload["moderator"] = None
    assert payload["admin"] is None
    assert "moderator" not in payload
    assert parse_qs(get_unsigned_payload(payload)) == {"nonce": ["n"]}


def test_encode_signed_mapping_requires_secret() -> None:
    with pytest.raises(ValueError):
        encode_signed({"nonce": "abc"})
