"""
Tests de integración para endpoints de la API.
"""

import httpx
import pytest
from httpx import AsyncClient

from pasarela.main import app
from pasarela.schemas import ProviderName

from tests.helpers import flow_body


def flow_paid_body(reference: str, status: str = "2") -> bytes:
    return flow_body({
        "commerceOrder": reference,
        "flowOrder": "5501",
        "status": status,
        "amount": 9990,
        "currency": "CLP",
    })


FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


class TestHealthEndpoints:
    """Tests para endpoints de salud."""
    
    @pytest.mark.asyncio
    async def test_root_endpoint(self, client: AsyncClient):
        response = await client.get("/")
        
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "running"
        assert "version" in data
    
    @pytest.mark.asyncio
    async def test_health_endpoint(self, client: AsyncClient):
        response = await client.get("/health")
        
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["payment_provider"] == "flow"
    
    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client: AsyncClient):
        response = await client.get("/health", headers={"X-Request-ID": "req-abc"})
        
        assert response.headers["X-Request-ID"] == "req-abc"


class TestPaymentEndpoints:
    """Tests para endpoints de pagos."""
    
    @pytest.mark.asyncio
    async def test_create_payment(self, client: AsyncClient, payment_data, flow_create_response):
        """Test crear un link de pago."""
        response = await client.post("/api/payments", json=payment_data)
        
        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["data"]["provider"] == "flow"
        assert data["data"]["redirect_url"].endswith("?token=tok-123")
    
    @pytest.mark.asyncio
    async def test_get_transaction(self, client: AsyncClient, payment_data, flow_create_response):
        created = await client.post("/api/payments", json=payment_data)
        reference = created.json()["data"]["transaction_ref"]
        
        response = await client.get(f"/api/payments/{reference}")
        
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "created"
        assert data["amount"] == 9990
        assert data["version"] == 1
        assert len(data["history"]) == 1
    
    @pytest.mark.asyncio
    async def test_get_transaction_not_found(self, client: AsyncClient):
        response = await client.get("/api/payments/no-existe")
        
        assert response.status_code == 404
    
    @pytest.mark.asyncio
    async def test_invalid_body(self, client: AsyncClient, payment_data):
        payment_data["currency"] = "XYZ"
        
        response = await client.post("/api/payments", json=payment_data)
        
        assert response.status_code == 422
    
    @pytest.mark.asyncio
    async def test_provider_error_is_bad_gateway(self, client: AsyncClient, stub, payment_data):
        stub.add("POST", "/api/payment/create", json_body={"message": "down"}, status_code=503)
        
        response = await client.post("/api/payments", json=payment_data)
        
        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "PROVIDER_ERROR"
        assert response.json()["detail"]["retryable"] is True
    
    @pytest.mark.asyncio
    async def test_provider_timeout_is_gateway_timeout(self, client: AsyncClient, stub, payment_data):
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)
        
        stub.add("POST", "/api/payment/create", handler=slow)
        
        response = await client.post("/api/payments", json=payment_data)
        
        assert response.status_code == 504
    
    @pytest.mark.asyncio
    async def test_verify_unknown_transaction(self, client: AsyncClient):
        response = await client.post("/api/payments/no-existe/verify")
        
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "TRANSACTION_NOT_FOUND"
    
    @pytest.mark.asyncio
    async def test_verify_transaction(self, client: AsyncClient, stub, payment_data, flow_create_response):
        created = await client.post("/api/payments", json=payment_data)
        reference = created.json()["data"]["transaction_ref"]
        stub.add(
            "GET",
            "/api/payment/getStatusByCommerceId",
            json_body={"commerceOrder": reference, "status": 2, "amount": 9990, "currency": "CLP"},
        )
        
        response = await client.post(f"/api/payments/{reference}/verify")
        
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "paid"
        assert data["credited_delta"] == 9990


class TestSubscriptionEndpoints:
    
    @pytest.mark.asyncio
    async def test_unsupported_provider(self, client: AsyncClient, make_gateway, payment_data):
        app.state.gateway = make_gateway(ProviderName.GLOBAL66)
        
        response = await client.post(
            "/api/subscriptions",
            json={**payment_data, "currency": "USD", "period": "monthly"},
        )
        
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "UNSUPPORTED_OPERATION"


class TestWebhookEndpoints:
    """Tests para webhooks entrantes."""
    
    @pytest.mark.asyncio
    async def test_flow_webhook_marks_paid(self, client: AsyncClient, payment_data, flow_create_response):
        created = await client.post("/api/payments", json=payment_data)
        reference = created.json()["data"]["transaction_ref"]
        
        response = await client.post(
            "/api/webhooks/flow",
            content=flow_paid_body(reference),
            headers=FORM_HEADERS,
        )
        
        assert response.status_code == 200
        data = response.json()
        assert data["received"] is True
        assert data["status"] == "paid"
        assert data["credited_delta"] == 9990
        
        transaction = await client.get(f"/api/payments/{reference}")
        assert transaction.json()["data"]["status"] == "paid"
    
    @pytest.mark.asyncio
    async def test_replayed_webhook_is_ok(self, client: AsyncClient, payment_data, flow_create_response):
        created = await client.post("/api/payments", json=payment_data)
        reference = created.json()["data"]["transaction_ref"]
        body = flow_paid_body(reference)
        
        await client.post("/api/webhooks/flow", content=body, headers=FORM_HEADERS)
        response = await client.post("/api/webhooks/flow", content=body, headers=FORM_HEADERS)
        
        assert response.status_code == 200
        assert response.json()["duplicate"] is True
        assert response.json()["credited_delta"] == 0
    
    @pytest.mark.asyncio
    async def test_invalid_signature_is_bad_request(self, client: AsyncClient):
        body = flow_paid_body("order-1", status="3").replace(b"status=3", b"status=2")
        
        response = await client.post("/api/webhooks/flow", content=body, headers=FORM_HEADERS)
        
        assert response.status_code == 400
        data = response.json()
        assert data["received"] is False
        assert data["error"]["code"] == "SIGNATURE_MISMATCH"
    
    @pytest.mark.asyncio
    async def test_unknown_provider(self, client: AsyncClient):
        response = await client.post("/api/webhooks/stripe", content=b"{}")
        
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNSUPPORTED_PROVIDER"
