"""
Interfaz base abstracta para adapters de proveedores de pago.
Define el contrato y los tipos canónicos que todos los adapters comparten.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Mapping

import httpx
import structlog

from pasarela.schemas.common import Environment, ProviderName, TransactionStatus
from pasarela.schemas.payment import PaymentRequest, SubscriptionRequest
from pasarela.utils.exceptions import (
    InvalidRequestError,
    MalformedPayloadError,
    NotFoundError,
    ProviderRequestError,
    ProviderTimeoutError,
    UnsupportedOperationError,
)


logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PaymentLink:
    """
    Link de pago normalizado.
    Todos los adapters retornan esta estructura al crear un pago.
    """
    
    transaction_ref: str  # Referencia opaca de la transacción
    redirect_url: str     # URL a la que se redirige al pagador
    provider: ProviderName
    expires_at: datetime | None = None
    raw_response: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class SubscriptionLink(PaymentLink):
    """Link de suscripción: PaymentLink más la referencia de la suscripción."""
    
    subscription_ref: str = ""


@dataclass(frozen=True)
class CanonicalWebhookEvent:
    """
    Evento de webhook normalizado.
    Representa un evento de cualquier proveedor en formato común.
    """
    
    provider: ProviderName
    event_id: str          # Clave de deduplicación
    transaction_ref: str
    status: TransactionStatus
    amount: int | None = None     # Unidad menor
    currency: str | None = None
    checksum: str = ""            # SHA-256 del payload crudo
    provider_status: str | None = None
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TransactionStatusReport:
    """Estado de una transacción consultado directamente al proveedor."""
    
    provider: ProviderName
    transaction_ref: str
    status: TransactionStatus
    amount: int | None = None
    currency: str | None = None
    provider_status: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class SignatureAlgorithm(str, Enum):
    """Esquemas de autenticación de webhooks."""
    
    HMAC_SHA256 = "hmac-sha256"  # HMAC hex sobre un mensaje canónico
    STATIC_KEY = "static-key"    # Clave compartida enviada tal cual


@dataclass(frozen=True)
class SignedMessage:
    """Material de firma extraído de un webhook por el adapter."""
    
    signature: str | None
    message: bytes = b""
    timestamp: float | None = None  # Epoch en segundos, si el proveedor lo envía


class ProviderAdapter(ABC):
    """
    Interfaz abstracta para proveedores de pago.
    
    Cada adapter (Flow, Global66, PayPal, Mercado Pago) traduce la solicitud
    canónica a la llamada del proveedor y normaliza sus webhooks. El
    orquestador nunca ramifica por proveedor fuera de la selección del adapter.
    """
    
    provider_name: ClassVar[ProviderName]
    supports_subscriptions: ClassVar[bool] = False
    signature_algorithm: ClassVar[SignatureAlgorithm] = SignatureAlgorithm.HMAC_SHA256
    
    # Mapeo de estados del proveedor a estados canónicos
    STATUS_MAP: ClassVar[dict[str, TransactionStatus]] = {}
    BASE_URLS: ClassVar[dict[Environment, str]] = {}
    SUPPORTED_CURRENCIES: ClassVar[frozenset[str] | None] = None
    
    def __init__(
        self,
        credentials: Any = None,
        http_client: httpx.AsyncClient | None = None,
        environment: Environment = Environment.SANDBOX,
        timeout_seconds: float = 10.0,
        link_ttl_seconds: int | None = 3600,
    ):
        """
        Inicializa el adapter.
        
        Args:
            credentials: Bundle de credenciales del proveedor (puede faltar;
                las operaciones fallan con InvalidRequestError)
            http_client: Cliente httpx compartido
            environment: sandbox o production
            timeout_seconds: Timeout acotado para cada llamada al proveedor
            link_ttl_seconds: Vigencia de los links de pago (None = sin expiración)
        """
        self._credentials = credentials
        self._http = http_client or httpx.AsyncClient()
        self._environment = Environment(environment)
        self._timeout_seconds = timeout_seconds
        self._link_ttl_seconds = link_ttl_seconds
    
    @property
    def credentials(self) -> Any:
        return self._credentials
    
    @property
    def base_url(self) -> str:
        override = getattr(self._credentials, "api_base_url", None)
        return (override or self.BASE_URLS[self._environment]).rstrip("/")
    
    @property
    @abstractmethod
    def webhook_secret(self) -> str | None:
        """Secreto con el que se verifican los webhooks de este proveedor."""
        pass
    
    @abstractmethod
    async def create_payment(self, request: PaymentRequest) -> PaymentLink:
        """
        Crea un link de pago en el proveedor.
        
        Raises:
            InvalidRequestError: Si faltan credenciales o campos requeridos
            ProviderRequestError: Si el proveedor responde con error
            ProviderTimeoutError: Si el proveedor no responde a tiempo
        """
        pass
    
    async def create_subscription(self, request: SubscriptionRequest) -> SubscriptionLink:
        """
        Crea una suscripción recurrente.
        
        Por defecto el proveedor no soporta suscripciones.
        """
        raise UnsupportedOperationError(self.provider_name.value, "subscriptions")
    
    @abstractmethod
    def normalize_webhook(self, raw_payload: bytes) -> CanonicalWebhookEvent:
        """
        Convierte el payload crudo del proveedor en un evento canónico.
        
        Raises:
            MalformedPayloadError: Si faltan campos requeridos
        """
        pass
    
    @abstractmethod
    async def verify_transaction(self, transaction_ref: str) -> TransactionStatusReport:
        """
        Consulta el estado de una transacción (fallback cuando no llegan webhooks).
        
        Raises:
            NotFoundError: Si el proveedor no tiene registro de la transacción
        """
        pass
    
    @abstractmethod
    def extract_signature(
        self,
        raw_payload: bytes,
        headers: Mapping[str, str],
    ) -> SignedMessage:
        """
        Extrae la firma recibida y reconstruye el mensaje firmado.
        
        Args:
            raw_payload: Cuerpo crudo del webhook
            headers: Headers con nombres en minúsculas
        """
        pass
    
    # ============================================
    # Helpers compartidos
    # ============================================
    
    def map_status(self, provider_status: Any) -> TransactionStatus:
        """Mapea un estado del proveedor; estados desconocidos -> UNKNOWN."""
        if provider_status is None:
            return TransactionStatus.UNKNOWN
        key = str(provider_status).strip()
        status = self.STATUS_MAP.get(key) or self.STATUS_MAP.get(key.lower())
        if status is None:
            logger.warning(
                "Unrecognized provider status",
                provider=self.provider_name.value,
                provider_status=key,
            )
            return TransactionStatus.UNKNOWN
        return status
    
    def _require_credentials(self, *fields: str) -> None:
        """Falla antes de cualquier llamada de red si faltan credenciales."""
        if self._credentials is None:
            raise InvalidRequestError(
                f"Provider {self.provider_name.value} is not configured",
                field="credentials",
            )
        for name in fields:
            if not getattr(self._credentials, name, None):
                raise InvalidRequestError(
                    f"Missing {self.provider_name.value} credential: {name}",
                    field=name,
                )
    
    def _require_currency(self, currency: str) -> None:
        if self.SUPPORTED_CURRENCIES is not None and currency not in self.SUPPORTED_CURRENCIES:
            raise InvalidRequestError(
                f"Currency {currency} is not supported by {self.provider_name.value}",
                field="currency",
            )
    
    def _require_notification_url(self, request: PaymentRequest) -> str:
        if not request.notification_url:
            raise InvalidRequestError(
                "notification_url is required and no public base URL is configured",
                field="notification_url",
            )
        return request.notification_url
    
    def _link_expiry(self) -> datetime | None:
        if not self._link_ttl_seconds:
            return None
        return utcnow() + timedelta(seconds=self._link_ttl_seconds)
    
    def _parse_json_payload(self, raw_payload: bytes) -> dict[str, Any]:
        """Parsea un payload JSON de webhook."""
        try:
            data = json.loads(raw_payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedPayloadError(self.provider_name.value, f"invalid JSON: {e}")
        if not isinstance(data, dict):
            raise MalformedPayloadError(self.provider_name.value, "expected a JSON object")
        return data
    
    async def _send(
        self,
        method: str,
        path: str,
        not_found_ref: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Envía un request al proveedor con timeout acotado.
        
        No reintenta: la política de reintentos es del llamador.
        
        Args:
            method: Método HTTP
            path: Ruta relativa a base_url (o URL absoluta)
            not_found_ref: Si se indica, un 404 se traduce a NotFoundError
        """
        url = path if path.startswith("http") else f"{self.base_url}/{path.lstrip('/')}"
        provider = self.provider_name.value
        
        try:
            response = await self._http.request(
                method,
                url,
                timeout=self._timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            logger.error(
                "Provider request timed out",
                provider=provider,
                url=url,
                timeout_seconds=self._timeout_seconds,
            )
            raise ProviderTimeoutError(provider, self._timeout_seconds) from e
        except httpx.HTTPError as e:
            logger.error("Provider request failed", provider=provider, url=url, error=str(e))
            raise ProviderRequestError(provider, str(e)) from e
        
        if response.status_code == 404 and not_found_ref is not None:
            raise NotFoundError(provider, not_found_ref)
        
        if response.status_code >= 400:
            logger.error(
                "Provider returned error",
                provider=provider,
                url=url,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise ProviderRequestError(
                provider,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        
        return response
    
    def _json(self, response: httpx.Response) -> dict[str, Any]:
        """Cuerpo JSON de una respuesta exitosa del proveedor."""
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderRequestError(
                self.provider_name.value,
                f"invalid JSON response: {e}",
                status_code=response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise ProviderRequestError(
                self.provider_name.value,
                "unexpected response shape",
                status_code=response.status_code,
            )
        return data
