"""
Helpers de tests: credenciales, stub de APIs de proveedores y firmas.
"""

import hashlib
import hmac
import json
import time
import zlib
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import urlencode

import httpx


FLOW_API_KEY = "flow-api-key"
FLOW_SECRET = "flow-secret-key"
GLOBAL66_API_KEY = "g66-api-key"
GLOBAL66_WEBHOOK_KEY = "g66-webhook-key"
PAYPAL_CLIENT_ID = "paypal-client"
PAYPAL_CLIENT_SECRET = "paypal-client-secret"
PAYPAL_WEBHOOK_ID = "WH-123"
PAYPAL_WEBHOOK_SECRET = "paypal-webhook-secret"
MP_ACCESS_TOKEN = "TEST-mp-token"
MP_WEBHOOK_SECRET = "mp-webhook-secret"

PUBLIC_BASE_URL = "https://shop.example.com"


# ============================================
# Stub de APIs de proveedores
# ============================================

class ProviderStub:
    """
    Handler para httpx.MockTransport.
    
    Responde según (método, path) y guarda los requests recibidos.
    """
    
    def __init__(self):
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []
    
    def add(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        status_code: int = 200,
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> None:
        if handler is None:
            def handler(request: httpx.Request) -> httpx.Response:
                return httpx.Response(status_code, json=json_body)
        self.routes[(method.upper(), path)] = handler
    
    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]
    
    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": "not found"})
        return handler(request)


# ============================================
# Helpers de firma
# ============================================

def hmac_hex(message: str, secret: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def flow_body(params: dict[str, Any], secret: str = FLOW_SECRET, sign: bool = True) -> bytes:
    """Cuerpo form-encoded de Flow con su parámetro de firma "s"."""
    params = {k: str(v) for k, v in params.items()}
    if sign:
        params["s"] = hmac_hex("".join(f"{k}{params[k]}" for k in sorted(params)), secret)
    return urlencode(params).encode()


def mercadopago_headers(
    data_id: str,
    secret: str = MP_WEBHOOK_SECRET,
    ts: int | None = None,
    request_id: str = "req-0001",
) -> dict[str, str]:
    ts = int(time.time()) if ts is None else ts
    manifest = f"id:{data_id.lower()};request-id:{request_id};ts:{ts};"
    return {
        "X-Signature": f"ts={ts},v1={hmac_hex(manifest, secret)}",
        "X-Request-Id": request_id,
    }


def paypal_headers(
    raw_payload: bytes,
    secret: str = PAYPAL_WEBHOOK_SECRET,
    webhook_id: str = PAYPAL_WEBHOOK_ID,
    transmission_time: str | None = None,
    transmission_id: str = "b2f0e1a0-0001",
) -> dict[str, str]:
    if transmission_time is None:
        transmission_time = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    message = f"{transmission_id}|{transmission_time}|{webhook_id}|{zlib.crc32(raw_payload)}"
    return {
        "PAYPAL-TRANSMISSION-ID": transmission_id,
        "PAYPAL-TRANSMISSION-TIME": transmission_time,
        "PAYPAL-TRANSMISSION-SIG": hmac_hex(message, secret),
    }


def global66_headers(key: str = GLOBAL66_WEBHOOK_KEY) -> dict[str, str]:
    return {"X-Global66-Webhook-Key": key}


def json_body(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload).encode()


