"""
Endpoints para gestión de pagos y suscripciones.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from pasarela.routes.errors import to_http_exception
from pasarela.schemas import (
    APIResponse,
    PaymentLinkResponse,
    PaymentRequest,
    StatusChangeResponse,
    SubscriptionRequest,
    TransactionResponse,
    WebhookResult,
)
from pasarela.schemas.common import ProviderName
from pasarela.services.gateway import PaymentGateway
from pasarela.services.reconciler import TransactionRecord
from pasarela.utils.exceptions import PasarelaError


logger = structlog.get_logger(__name__)

router = APIRouter()
subscriptions_router = APIRouter()


def get_gateway(request: Request) -> PaymentGateway:
    """Dependency para obtener la pasarela construida en el arranque."""
    return request.app.state.gateway


def to_transaction_response(record: TransactionRecord) -> TransactionResponse:
    return TransactionResponse(
        transaction_ref=record.reference,
        provider=record.provider,
        status=record.status,
        amount=record.amount,
        currency=record.currency,
        version=record.version,
        history=[
            StatusChangeResponse(
                status=change.status,
                occurred_at=change.occurred_at,
                event_id=change.event_id,
                applied=change.applied,
            )
            for change in record.history
        ],
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


@router.post(
    "",
    response_model=APIResponse[PaymentLinkResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Crear un link de pago",
    description="""
    Crea un link de pago con el proveedor activo.
    
    - El monto se expresa en unidad menor de la moneda
    - La transacción queda en estado `created` hasta recibir el webhook
    """,
)
async def create_payment(
    request: PaymentRequest,
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Crea un nuevo link de pago."""
    try:
        link = await gateway.create_payment(request)
    except PasarelaError as e:
        raise to_http_exception(e)
    
    return APIResponse(
        success=True,
        message="Payment link created successfully",
        data=PaymentLinkResponse(
            transaction_ref=link.transaction_ref,
            redirect_url=link.redirect_url,
            provider=link.provider,
            expires_at=link.expires_at,
        ),
    )


@subscriptions_router.post(
    "",
    response_model=APIResponse[PaymentLinkResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Crear una suscripción",
)
async def create_subscription(
    request: SubscriptionRequest,
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Crea una suscripción recurrente (si el proveedor la soporta)."""
    try:
        link = await gateway.create_subscription(request)
    except PasarelaError as e:
        raise to_http_exception(e)
    
    return APIResponse(
        success=True,
        message="Subscription created successfully",
        data=PaymentLinkResponse(
            transaction_ref=link.transaction_ref,
            redirect_url=link.redirect_url,
            provider=link.provider,
            expires_at=link.expires_at,
            subscription_ref=link.subscription_ref,
        ),
    )


@router.get(
    "/{reference}",
    response_model=APIResponse[TransactionResponse],
    summary="Obtener una transacción",
)
async def get_transaction(
    reference: str,
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Obtiene el estado local de una transacción y su historial."""
    try:
        record = await gateway.get_transaction(reference)
    except PasarelaError as e:
        raise to_http_exception(e)
    
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Transaction not found: {reference}",
        )
    
    return APIResponse(success=True, data=to_transaction_response(record))


@router.post(
    "/{reference}/verify",
    response_model=APIResponse[WebhookResult],
    summary="Verificar una transacción con el proveedor",
    description="""
    Consulta el estado directamente al proveedor y lo aplica como si
    fuera un webhook. Útil cuando los webhooks no llegaron.
    """,
)
async def verify_transaction(
    reference: str,
    provider: ProviderName | None = None,
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Reconcilia una transacción consultando al proveedor."""
    try:
        result = await gateway.verify_transaction(reference, provider=provider)
    except PasarelaError as e:
        raise to_http_exception(e)
    
    logger.info(
        "Transaction verified",
        transaction_ref=reference,
        status=result.status.value if result.status else None,
        applied=result.applied,
    )
    return APIResponse(success=True, data=result)
