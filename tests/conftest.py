"""
Configuración de tests y fixtures compartidos.
"""

from typing import Any, AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from pasarela.db.store import InMemoryTransactionStore
from pasarela.schemas import (
    FlowCredentials,
    GatewayConfig,
    Global66Credentials,
    MercadoPagoCredentials,
    PayPalCredentials,
    ProviderName,
)
from pasarela.services.gateway import PaymentGateway
from pasarela.utils.idempotency import InMemoryIdempotencyStore

from tests.helpers import (
    FLOW_API_KEY,
    FLOW_SECRET,
    GLOBAL66_API_KEY,
    GLOBAL66_WEBHOOK_KEY,
    MP_ACCESS_TOKEN,
    MP_WEBHOOK_SECRET,
    PAYPAL_CLIENT_ID,
    PAYPAL_CLIENT_SECRET,
    PAYPAL_WEBHOOK_ID,
    PAYPAL_WEBHOOK_SECRET,
    PUBLIC_BASE_URL,
    ProviderStub,
)


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def stub() -> ProviderStub:
    return ProviderStub()


@pytest_asyncio.fixture
async def http_client(stub: ProviderStub) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Cliente httpx cuyo transporte es el stub de proveedores."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub)) as client:
        yield client


@pytest.fixture
def gateway_config() -> GatewayConfig:
    """Configuración con los cuatro proveedores; Flow activo."""
    return GatewayConfig(
        provider=ProviderName.FLOW,
        flow=FlowCredentials(api_key=FLOW_API_KEY, secret_key=FLOW_SECRET),
        global66=Global66Credentials(api_key=GLOBAL66_API_KEY, webhook_key=GLOBAL66_WEBHOOK_KEY),
        paypal=PayPalCredentials(
            client_id=PAYPAL_CLIENT_ID,
            client_secret=PAYPAL_CLIENT_SECRET,
            webhook_id=PAYPAL_WEBHOOK_ID,
            webhook_secret=PAYPAL_WEBHOOK_SECRET,
        ),
        mercadopago=MercadoPagoCredentials(
            access_token=MP_ACCESS_TOKEN,
            webhook_secret=MP_WEBHOOK_SECRET,
        ),
        public_base_url=PUBLIC_BASE_URL,
    )


@pytest.fixture
def transactions() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def idempotency() -> InMemoryIdempotencyStore:
    return InMemoryIdempotencyStore()


@pytest.fixture
def make_gateway(gateway_config, http_client, transactions, idempotency):
    """Factory de pasarelas en memoria con el proveedor activo indicado."""
    
    def factory(provider: ProviderName = ProviderName.FLOW, **overrides: Any) -> PaymentGateway:
        config = GatewayConfig.model_validate(
            {**gateway_config.model_dump(), "provider": provider, **overrides}
        )
        return PaymentGateway.from_config(
            config,
            transactions=transactions,
            idempotency=idempotency,
            http_client=http_client,
        )
    
    return factory


@pytest.fixture
def gateway(make_gateway) -> PaymentGateway:
    return make_gateway()


@pytest.fixture
def payment_data() -> dict[str, Any]:
    """Datos de ejemplo para crear un pago."""
    return {
        "amount": 9990,
        "currency": "CLP",
        "description": "Suscripción anual",
        "payer_email": "cliente@example.com",
        "return_url": "https://shop.example.com/gracias",
    }


@pytest.fixture
def flow_create_response(stub: ProviderStub) -> None:
    stub.add(
        "POST",
        "/api/payment/create",
        json_body={"url": "https://sandbox.flow.cl/app/web/pay.php", "token": "tok-123", "flowOrder": 5501},
    )


@pytest_asyncio.fixture
async def client(gateway: PaymentGateway) -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP para tests de API (sin lifespan: la pasarela se inyecta)."""
    from pasarela.main import app
    
    app.state.gateway = gateway
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.state.gateway = None
