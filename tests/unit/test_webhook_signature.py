"""Unit tests for webhook HMAC verification."""

import pytest
from services.fulfillment_service.errors import AuthenticationError
from services.fulfillment_service.services.webhook_gateway import (
    compute_signature,
    verify_signature,
)

SECRET = "whsec-test"
BODY = b'{"type":"payment","data":{"id":"1001"}}'


@pytest.mark.unit
def test_valid_signature_passes():
    verify_signature(BODY, compute_signature(BODY, SECRET), SECRET)


@pytest.mark.unit
def test_prefixed_and_uppercase_signature_passes():
    signature = "sha256=" + compute_signature(BODY, SECRET).upper()
    verify_signature(BODY, signature, SECRET)


@pytest.mark.unit
def test_tampered_body_is_rejected():
    signature = compute_signature(BODY, SECRET)
    with pytest.raises(AuthenticationError):
        verify_signature(BODY.replace(b"1001", b"9999"), signature, SECRET)


@pytest.mark.unit
def test_wrong_secret_is_rejected():
    with pytest.raises(AuthenticationError):
        verify_signature(BODY, compute_signature(BODY, "other"), SECRET)


@pytest.mark.unit
@pytest.mark.parametrize("signature", [None, ""])
def test_missing_signature_is_rejected(signature):
    with pytest.raises(AuthenticationError):
        verify_signature(BODY, signature, SECRET)
