"""
Tests del verificador de firmas de webhooks.
"""

import time

import pytest

from pasarela.adapters import build_adapters
from pasarela.schemas.common import ProviderName
from pasarela.services.signature_verifier import RejectionReason, SignatureVerifier

from tests.helpers import (
    FLOW_SECRET,
    GLOBAL66_WEBHOOK_KEY,
    MP_WEBHOOK_SECRET,
    PAYPAL_WEBHOOK_SECRET,
    flow_body,
    global66_headers,
    json_body,
    mercadopago_headers,
    paypal_headers,
)


@pytest.fixture
def verifier(gateway_config) -> SignatureVerifier:
    return SignatureVerifier(build_adapters(gateway_config), tolerance_seconds=300)


class TestFlowSignature:
    
    def test_valid_signature(self, verifier):
        body = flow_body({"commerceOrder": "abc", "status": "2"})
        
        result = verifier.verify(ProviderName.FLOW, body, {}, FLOW_SECRET)
        
        assert result.verified is True
        assert result.reason is None
    
    def test_missing_signature(self, verifier):
        body = flow_body({"commerceOrder": "abc", "status": "2"}, sign=False)
        
        result = verifier.verify(ProviderName.FLOW, body, {}, FLOW_SECRET)
        
        assert result.verified is False
        assert result.reason == RejectionReason.MISSING_SIGNATURE
    
    def test_tampered_parameter(self, verifier):
        body = flow_body({"commerceOrder": "abc", "status": "3"}).replace(b"status=3", b"status=2")
        
        result = verifier.verify(ProviderName.FLOW, body, {}, FLOW_SECRET)
        
        assert result.reason == RejectionReason.SIGNATURE_MISMATCH


class TestMercadoPagoSignature:
    
    def test_valid_signature(self, verifier):
        body = json_body({"data": {"id": "123456"}})
        
        result = verifier.verify(
            ProviderName.MERCADOPAGO, body, mercadopago_headers("123456"), MP_WEBHOOK_SECRET
        )
        
        assert result.verified is True
    
    def test_header_lookup_is_case_insensitive(self, verifier):
        body = json_body({"data": {"id": "123456"}})
        headers = {k.lower(): v for k, v in mercadopago_headers("123456").items()}
        
        result = verifier.verify(ProviderName.MERCADOPAGO, body, headers, MP_WEBHOOK_SECRET)
        
        assert result.verified is True
    
    def test_signature_over_other_data_id(self, verifier):
        body = json_body({"data": {"id": "999999"}})
        
        result = verifier.verify(
            ProviderName.MERCADOPAGO, body, mercadopago_headers("123456"), MP_WEBHOOK_SECRET
        )
        
        assert result.reason == RejectionReason.SIGNATURE_MISMATCH
    
    def test_expired_timestamp(self, verifier):
        body = json_body({"data": {"id": "123456"}})
        headers = mercadopago_headers("123456", ts=int(time.time()) - 3600)
        
        result = verifier.verify(ProviderName.MERCADOPAGO, body, headers, MP_WEBHOOK_SECRET)
        
        assert result.reason == RejectionReason.EXPIRED_TIMESTAMP
    
    def test_millisecond_timestamp_is_accepted(self, verifier):
        body = json_body({"data": {"id": "123456"}})
        headers = mercadopago_headers("123456", ts=int(time.time() * 1000))
        
        result = verifier.verify(ProviderName.MERCADOPAGO, body, headers, MP_WEBHOOK_SECRET)
        
        assert result.verified is True
    
    def test_missing_header(self, verifier):
        result = verifier.verify(ProviderName.MERCADOPAGO, b"{}", {}, MP_WEBHOOK_SECRET)
        
        assert result.reason == RejectionReason.MISSING_SIGNATURE
    
    def test_injected_clock(self, gateway_config):
        ts = 1_700_000_000
        verifier = SignatureVerifier(
            build_adapters(gateway_config),
            tolerance_seconds=300,
            clock=lambda: ts + 100,
        )
        body = json_body({"data": {"id": "123456"}})
        
        result = verifier.verify(
            ProviderName.MERCADOPAGO, body, mercadopago_headers("123456", ts=ts), MP_WEBHOOK_SECRET
        )
        
        assert result.verified is True


class TestPayPalSignature:
    
    def test_valid_signature(self, verifier):
        body = json_body({"id": "WH-EVT-1"})
        
        result = verifier.verify(ProviderName.PAYPAL, body, paypal_headers(body), PAYPAL_WEBHOOK_SECRET)
        
        assert result.verified is True
    
    def test_body_changed_after_signing(self, verifier):
        body = json_body({"id": "WH-EVT-1"})
        headers = paypal_headers(body)
        
        result = verifier.verify(
            ProviderName.PAYPAL, json_body({"id": "WH-EVT-2"}), headers, PAYPAL_WEBHOOK_SECRET
        )
        
        assert result.reason == RejectionReason.SIGNATURE_MISMATCH
    
    def test_old_transmission_time(self, verifier):
        body = json_body({"id": "WH-EVT-1"})
        headers = paypal_headers(body, transmission_time="2020-01-01T00:00:00Z")
        
        result = verifier.verify(ProviderName.PAYPAL, body, headers, PAYPAL_WEBHOOK_SECRET)
        
        assert result.reason == RejectionReason.EXPIRED_TIMESTAMP


class TestGlobal66Signature:
    
    def test_valid_key(self, verifier):
        result = verifier.verify(ProviderName.GLOBAL66, b"{}", global66_headers(), GLOBAL66_WEBHOOK_KEY)
        
        assert result.verified is True
    
    def test_wrong_key(self, verifier):
        result = verifier.verify(
            ProviderName.GLOBAL66, b"{}", global66_headers("otra-clave"), GLOBAL66_WEBHOOK_KEY
        )
        
        assert result.reason == RejectionReason.SIGNATURE_MISMATCH
    
    def test_missing_key(self, verifier):
        result = verifier.verify(ProviderName.GLOBAL66, b"{}", {}, GLOBAL66_WEBHOOK_KEY)
        
        assert result.reason == RejectionReason.MISSING_SIGNATURE
