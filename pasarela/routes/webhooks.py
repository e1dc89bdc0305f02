"""
Endpoints para webhooks entrantes de proveedores.
"""

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from pasarela.routes.errors import to_http_exception
from pasarela.routes.payments import get_gateway
from pasarela.services.gateway import PaymentGateway
from pasarela.utils.exceptions import InfrastructureError


logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post(
    "/{provider}",
    status_code=status.HTTP_200_OK,
    summary="Webhook de proveedor de pago",
    description="""
    Endpoint para recibir webhooks de Flow, Global66, PayPal y Mercado Pago.
    
    - Valida la firma con el esquema del proveedor
    - Descarta eventos ya procesados (idempotencia)
    - Aplica la transición de estado de la transacción
    
    Responde 200 si el evento se procesó (o ya estaba procesado), 400 si
    la firma o el payload son inválidos y 500 ante fallas internas, para
    que el proveedor reintente.
    """,
)
async def provider_webhook(
    provider: str,
    request: Request,
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Procesa un webhook de un proveedor."""
    # Leer body crudo para validar firma
    payload = await request.body()
    
    try:
        result = await gateway.handle_webhook(provider, payload, dict(request.headers))
    except InfrastructureError as e:
        raise to_http_exception(e)
    
    if result.is_valid:
        logger.info(
            "Webhook processed",
            provider=provider,
            event_id=result.event_id,
            status=result.status.value if result.status else None,
            applied=result.applied,
            duplicate=result.duplicate,
        )
    
    return JSONResponse(
        status_code=result.http_status,
        content={"received": result.is_valid, **result.model_dump(mode="json")},
    )
