"""
Orquestador de pagos.

Expone las operaciones unificadas (crear pago, crear suscripción, procesar
webhook, verificar transacción) y encadena verificación de firma,
idempotencia y reconciliación sin ramificar por proveedor.
"""

from typing import Any, Mapping, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from pasarela.adapters.base import (
    CanonicalWebhookEvent,
    PaymentLink,
    ProviderAdapter,
    SubscriptionLink,
)
from pasarela.adapters.factory import build_adapters, parse_provider_name
from pasarela.db.store import InMemoryTransactionStore, TransactionStore
from pasarela.schemas.common import ProviderName
from pasarela.schemas.gateway import GatewayConfig
from pasarela.schemas.payment import PaymentRequest, SubscriptionRequest
from pasarela.schemas.webhook import WebhookResult
from pasarela.services.reconciler import (
    ReconcileOutcome,
    Reconciliation,
    TransactionReconciler,
    TransactionRecord,
)
from pasarela.services.signature_verifier import SignatureVerifier
from pasarela.utils.exceptions import (
    ConcurrencyConflictError,
    InfrastructureError,
    InvalidRequestError,
    MalformedPayloadError,
    UnsupportedOperationError,
)
from pasarela.utils.idempotency import IdempotencyStore, InMemoryIdempotencyStore


logger = structlog.get_logger(__name__)

RequestT = TypeVar("RequestT", bound=PaymentRequest)


class PaymentGateway:
    """
    Punto de entrada de la pasarela.
    
    El proveedor activo se elige una sola vez, desde la configuración. Los
    webhooks y la verificación usan el adapter del proveedor que originó
    la transacción, de modo que cambiar el proveedor activo no deja
    huérfanas las transacciones en curso.
    """
    
    def __init__(
        self,
        config: GatewayConfig,
        adapters: Mapping[ProviderName, ProviderAdapter],
        transactions: TransactionStore,
        idempotency: IdempotencyStore,
        verifier: SignatureVerifier | None = None,
        reconciler: TransactionReconciler | None = None,
    ):
        """
        Args:
            config: Configuración validada
            adapters: Adapters por proveedor (al menos el activo)
            transactions: Almacenamiento de registros de transacción
            idempotency: Almacenamiento de eventos procesados
            verifier: Verificador de firmas (por defecto, uno sobre adapters)
            reconciler: Máquina de estados (por defecto, la estándar)
        """
        if config.provider not in adapters:
            raise InfrastructureError(
                f"No adapter for active provider '{config.provider.value}'",
                code="PROVIDER_NOT_CONFIGURED",
            )
        
        self._config = config
        self._adapters = dict(adapters)
        self._transactions = transactions
        self._idempotency = idempotency
        self._verifier = verifier or SignatureVerifier(
            self._adapters,
            tolerance_seconds=config.signature_tolerance_seconds,
        )
        self._reconciler = reconciler or TransactionReconciler()
        self._owned_http_client: httpx.AsyncClient | None = None
    
    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        transactions: TransactionStore | None = None,
        idempotency: IdempotencyStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "PaymentGateway":
        """
        Construye la pasarela con un adapter por proveedor configurado.
        
        Sin stores explícitos se usan las implementaciones en memoria
        (solo para desarrollo).
        """
        owned_client = None
        if http_client is None:
            owned_client = http_client = httpx.AsyncClient()
        
        gateway = cls(
            config=config,
            adapters=build_adapters(config, http_client),
            transactions=transactions if transactions is not None else InMemoryTransactionStore(),
            idempotency=(
                idempotency
                if idempotency is not None
                else InMemoryIdempotencyStore(config.idempotency_ttl_hours)
            ),
        )
        gateway._owned_http_client = owned_client
        return gateway
    
    async def aclose(self) -> None:
        """Cierra el cliente HTTP si la pasarela lo creó."""
        if self._owned_http_client is not None:
            await self._owned_http_client.aclose()
            self._owned_http_client = None
    
    @property
    def config(self) -> GatewayConfig:
        return self._config
    
    @property
    def active_provider(self) -> ProviderName:
        return self._config.provider
    
    @property
    def adapters(self) -> Mapping[ProviderName, ProviderAdapter]:
        return self._adapters
    
    # ============================================
    # Creación de pagos
    # ============================================
    
    def _prepare(self, model: type[RequestT], request: Any) -> RequestT:
        """Valida la solicitud y completa la URL de notificación."""
        try:
            if isinstance(request, model):
                validated = request
            elif isinstance(request, BaseModel):
                validated = model.model_validate(request.model_dump())
            else:
                validated = model.model_validate(request)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or None
            raise InvalidRequestError(f"Invalid request: {first.get('msg')}", field=field) from e
        
        if not validated.notification_url:
            default_url = self._config.notification_url(self.active_provider)
            if default_url:
                validated = validated.model_copy(update={"notification_url": default_url})
        
        return validated
    
    async def _seed(self, link: PaymentLink, request: PaymentRequest) -> None:
        record = TransactionRecord.seed(
            reference=link.transaction_ref,
            provider=link.provider,
            amount=request.amount,
            currency=request.currency,
            source_event_id=f"create:{link.transaction_ref}",
        )
        try:
            await self._transactions.create(record)
        except ConcurrencyConflictError:
            # Un webhook temprano pudo crear el registro antes que nosotros
            logger.warning(
                "Transaction already exists, keeping stored record",
                transaction_ref=link.transaction_ref,
            )
    
    async def create_payment(self, request: PaymentRequest | Mapping[str, Any]) -> PaymentLink:
        """
        Crea un link de pago con el proveedor activo.
        
        Args:
            request: PaymentRequest o un mapping con sus campos
            
        Returns:
            PaymentLink con la referencia de la transacción
            
        Raises:
            InvalidRequestError: Si la solicitud no es válida
            ProviderRequestError: Si el proveedor responde con error
            ProviderTimeoutError: Si el proveedor no responde a tiempo
        """
        validated = self._prepare(PaymentRequest, request)
        adapter = self._adapters[self.active_provider]
        
        link = await adapter.create_payment(validated)
        await self._seed(link, validated)
        
        logger.info(
            "Payment link created",
            provider=link.provider.value,
            transaction_ref=link.transaction_ref,
            amount=validated.amount,
            currency=validated.currency,
        )
        return link
    
    async def create_subscription(
        self,
        request: SubscriptionRequest | Mapping[str, Any],
    ) -> SubscriptionLink:
        """
        Crea una suscripción con el proveedor activo.
        
        Raises:
            UnsupportedOperationError: Si el proveedor no soporta suscripciones
        """
        adapter = self._adapters[self.active_provider]
        if not adapter.supports_subscriptions:
            raise UnsupportedOperationError(adapter.provider_name.value, "subscriptions")
        
        validated = self._prepare(SubscriptionRequest, request)
        
        link = await adapter.create_subscription(validated)
        await self._seed(link, validated)
        
        logger.info(
            "Subscription created",
            provider=link.provider.value,
            transaction_ref=link.transaction_ref,
            subscription_ref=link.subscription_ref,
            period=validated.period.value,
        )
        return link
    
    # ============================================
    # Webhooks y reconciliación
    # ============================================
    
    async def handle_webhook(
        self,
        provider: str | ProviderName,
        raw_payload: bytes | str,
        headers: Mapping[str, str] | None = None,
    ) -> WebhookResult:
        """
        Procesa un webhook entrante.
        
        1. Verifica la firma (rechazo -> resultado inválido, sin cambios)
        2. Normaliza el payload al evento canónico
        3. Marca el evento en el store de idempotencia
        4. Aplica la transición y persiste el registro
        
        Los errores de firma y de payload se retornan como resultado; solo
        las fallas de infraestructura se propagan.
        
        Raises:
            InfrastructureError: Si falla el almacenamiento o falta el secreto
        """
        try:
            name = parse_provider_name(provider)
        except InvalidRequestError as e:
            logger.warning("Webhook for unsupported provider", provider=str(provider))
            return WebhookResult.rejected("UNSUPPORTED_PROVIDER", e.message)
        
        adapter = self._adapters.get(name)
        if adapter is None:
            logger.warning("Webhook for unconfigured provider", provider=name.value)
            return WebhookResult.rejected(
                "UNSUPPORTED_PROVIDER",
                f"Provider {name.value} is not configured",
                provider=name,
            )
        
        secret = adapter.webhook_secret
        if not secret:
            raise InfrastructureError(
                f"Webhook secret not configured for {name.value}",
                code="WEBHOOK_SECRET_MISSING",
            )
        
        if isinstance(raw_payload, str):
            raw_payload = raw_payload.encode("utf-8")
        
        verification = self._verifier.verify(name, raw_payload, headers or {}, secret)
        if not verification.verified:
            return WebhookResult.rejected(
                verification.reason.value.upper(),
                verification.detail or "signature rejected",
                provider=name,
            )
        
        try:
            event = adapter.normalize_webhook(raw_payload)
        except MalformedPayloadError as e:
            logger.warning("Malformed webhook payload", provider=name.value, error=e.message)
            return WebhookResult.rejected("MALFORMED_PAYLOAD", e.message, provider=name)
        
        logger.info(
            "Webhook received",
            provider=name.value,
            event_id=event.event_id,
            transaction_ref=event.transaction_ref,
            status=event.status.value,
        )
        return await self._process_event(event)
    
    async def verify_transaction(
        self,
        reference: str,
        provider: str | ProviderName | None = None,
    ) -> WebhookResult:
        """
        Consulta el estado al proveedor y lo aplica como un webhook.
        
        Permite recuperar transacciones cuyos webhooks se perdieron. El
        adapter se elige por el proveedor del registro; si no existe
        registro, por el proveedor indicado o el activo.
        
        Raises:
            NotFoundError: Si el proveedor no conoce la transacción
            ProviderRequestError: Si el proveedor responde con error
        """
        record = await self._transactions.get(reference)
        if record is not None:
            name = record.provider
        elif provider is not None:
            name = parse_provider_name(provider)
        else:
            name = self.active_provider
        
        adapter = self._adapters.get(name)
        if adapter is None:
            raise InvalidRequestError(f"Provider {name.value} is not configured", field="provider")
        
        report = await adapter.verify_transaction(reference)
        event = CanonicalWebhookEvent(
            provider=name,
            event_id=f"poll:{reference}:{report.status.value}",
            transaction_ref=reference,
            status=report.status,
            amount=report.amount,
            currency=report.currency,
            provider_status=report.provider_status,
        )
        
        logger.info(
            "Transaction verified with provider",
            provider=name.value,
            transaction_ref=reference,
            status=report.status.value,
            provider_status=report.provider_status,
        )
        return await self._process_event(event)
    
    async def get_transaction(self, reference: str) -> TransactionRecord | None:
        """Obtiene el registro local de una transacción."""
        return await self._transactions.get(reference)
    
    @staticmethod
    def _mark_key(event: CanonicalWebhookEvent) -> str:
        # Los IDs de evento solo son únicos dentro de cada proveedor
        return f"{event.provider.value}:{event.event_id}"
    
    async def _process_event(self, event: CanonicalWebhookEvent) -> WebhookResult:
        mark_key = self._mark_key(event)
        check = await self._idempotency.check_and_mark(mark_key)
        
        if check.already_processed:
            record = await self._transactions.get(event.transaction_ref)
            return WebhookResult(
                is_valid=True,
                provider=event.provider,
                event_id=event.event_id,
                transaction_ref=event.transaction_ref,
                status=record.status if record else event.status,
                duplicate=True,
            )
        
        try:
            record, reconciliation = await self._reconcile(event)
        except Exception:
            # Sin desmarcar, el reintento del proveedor se descartaría como duplicado
            await self._release(mark_key)
            raise
        
        return WebhookResult(
            is_valid=True,
            provider=event.provider,
            event_id=event.event_id,
            transaction_ref=record.reference,
            status=record.status,
            credited_delta=reconciliation.credited_delta,
            applied=reconciliation.applied,
            duplicate=reconciliation.outcome == ReconcileOutcome.DUPLICATE,
            warnings=[reconciliation.warning] if reconciliation.warning else [],
        )
    
    async def _release(self, event_id: str) -> None:
        try:
            await self._idempotency.release(event_id)
        except InfrastructureError as e:
            logger.error("Could not release event mark", event_id=event_id, error=e.message)
    
    async def _reconcile(
        self,
        event: CanonicalWebhookEvent,
    ) -> tuple[TransactionRecord, Reconciliation]:
        """Lee, aplica y guarda con reintentos ante conflictos de versión."""
        attempts = self._config.max_conflict_retries
        
        for attempt in range(1, attempts + 1):
            current = await self._transactions.get(event.transaction_ref)
            is_new = current is None
            if is_new:
                logger.info(
                    "Event for unseen transaction, seeding record",
                    provider=event.provider.value,
                    transaction_ref=event.transaction_ref,
                )
                current = TransactionRecord.seed(
                    reference=event.transaction_ref,
                    provider=event.provider,
                    amount=event.amount,
                    currency=event.currency,
                    source_event_id=f"seed:{event.event_id}",
                )
            
            updated, reconciliation = self._reconciler.apply(current, event)
            
            try:
                if is_new:
                    stored = await self._transactions.create(updated)
                else:
                    stored = await self._transactions.update(updated, expected_version=current.version)
                return stored, reconciliation
            except ConcurrencyConflictError:
                logger.warning(
                    "Concurrent update on transaction, retrying",
                    transaction_ref=event.transaction_ref,
                    attempt=attempt,
                    max_attempts=attempts,
                )
        
        raise InfrastructureError(
            f"Could not persist transaction {event.transaction_ref} after {attempts} attempts",
            code="CONCURRENCY_RETRIES_EXHAUSTED",
        )
