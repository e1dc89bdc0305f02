"""
Tests para utilidades HMAC, monedas e idempotencia.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from pasarela.schemas.currency import (
    format_major_units,
    json_major_units,
    normalize_currency,
    to_major_units,
    to_minor_units,
)
from pasarela.utils.exceptions import InfrastructureError
from pasarela.utils.hmac_utils import (
    constant_time_equals,
    generate_signature,
    is_within_tolerance,
    parse_signature_header,
    payload_checksum,
    verify_signature,
)
from pasarela.utils.idempotency import InMemoryIdempotencyStore, RedisIdempotencyStore


class TestHMACUtils:
    """Tests para utilidades HMAC."""
    
    def test_generate_signature(self):
        """Test generación de firma."""
        signature = generate_signature(b"test payload", "test-secret")
        
        assert isinstance(signature, str)
        assert len(signature) == 64  # SHA256 hex
    
    def test_verify_signature_valid(self):
        payload = b"test payload"
        signature = generate_signature(payload, "test-secret")
        
        assert verify_signature(payload, signature, "test-secret") is True
    
    def test_verify_signature_accepts_uppercase_hex(self):
        payload = b"test payload"
        signature = generate_signature(payload, "test-secret").upper()
        
        assert verify_signature(payload, signature, "test-secret") is True
    
    def test_verify_signature_invalid(self):
        assert verify_signature(b"test payload", "invalid", "test-secret") is False
    
    def test_verify_signature_wrong_secret(self):
        signature = generate_signature(b"test payload", "secret-1")
        
        assert verify_signature(b"test payload", signature, "secret-2") is False
    
    def test_constant_time_equals(self):
        assert constant_time_equals("clave", "clave") is True
        assert constant_time_equals("clave", "Clave") is False
        assert constant_time_equals("", "clave") is False
    
    def test_parse_signature_header(self):
        parts = parse_signature_header("ts=1704908010, v1=abc123,basura")
        
        assert parts == {"ts": "1704908010", "v1": "abc123"}
    
    def test_payload_checksum_is_sha256(self):
        assert payload_checksum(b"") == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )
    
    def test_timestamp_tolerance(self):
        now = 1_700_000_000
        
        assert is_within_tolerance(now - 299, 300, now=now) is True
        assert is_within_tolerance(now + 299, 300, now=now) is True
        assert is_within_tolerance(now - 301, 300, now=now) is False


class TestCurrency:
    """Tests de la tabla ISO 4217."""
    
    def test_normalize_currency(self):
        assert normalize_currency(" clp ") == "CLP"
        
        with pytest.raises(ValueError):
            normalize_currency("XYZ")
    
    def test_zero_decimal_currency(self):
        assert to_major_units(9990, "CLP") == Decimal(9990)
        assert format_major_units(9990, "CLP") == "9990"
        assert json_major_units(9990, "CLP") == 9990
    
    def test_two_decimal_currency(self):
        assert format_major_units(1050, "USD") == "10.50"
        assert json_major_units(1050, "USD") == 10.5
        assert to_minor_units("10.50", "USD") == 1050
        assert to_minor_units(10.5, "usd") == 1050
    
    def test_three_decimal_currency(self):
        assert format_major_units(1500, "KWD") == "1.500"


class TestInMemoryIdempotencyStore:
    """Tests para el store de idempotencia en memoria."""
    
    @pytest.mark.asyncio
    async def test_first_mark_is_not_processed(self):
        store = InMemoryIdempotencyStore()
        
        check = await store.check_and_mark("evt-1")
        
        assert check.already_processed is False
        assert "evt-1" in store
    
    @pytest.mark.asyncio
    async def test_second_mark_is_processed(self):
        store = InMemoryIdempotencyStore()
        await store.check_and_mark("evt-1")
        
        check = await store.check_and_mark("evt-1")
        
        assert check.already_processed is True
    
    @pytest.mark.asyncio
    async def test_release_allows_retry(self):
        store = InMemoryIdempotencyStore()
        await store.check_and_mark("evt-1")
        await store.release("evt-1")
        
        check = await store.check_and_mark("evt-1")
        
        assert check.already_processed is False
    
    @pytest.mark.asyncio
    async def test_concurrent_marks_only_one_wins(self):
        store = InMemoryIdempotencyStore()
        
        checks = await asyncio.gather(*[store.check_and_mark("evt-1") for _ in range(10)])
        
        assert sum(not c.already_processed for c in checks) == 1
    
    @pytest.mark.asyncio
    async def test_expired_mark_is_not_processed(self):
        store = InMemoryIdempotencyStore(ttl_hours=0)
        await store.check_and_mark("evt-1")
        
        check = await store.check_and_mark("evt-1")

        assert check.already_processed is False

    @pytest.mark.asyncio
    async def test_expired_marks_are_evicted(self):
        store = InMemoryIdempotencyStore(ttl_hours=0)
        for i in range(5):
            await store.check_and_mark(f"evt-{i}")

        assert len(store) == 1
        assert "evt-4" in store
        assert "evt-0" not in store


class TestRedisIdempotencyStore:
    """Tests para el store de idempotencia en Redis (cliente simulado)."""
    
    @pytest.mark.asyncio
    async def test_uses_set_nx_with_ttl(self):
        redis_client = AsyncMock()
        redis_client.set.return_value = True
        store = RedisIdempotencyStore(redis_client, ttl_hours=72)
        
        check = await store.check_and_mark("evt-1")
        
        assert check.already_processed is False
        args, kwargs = redis_client.set.call_args
        assert args[0] == "pasarela:event:evt-1"
        assert kwargs["nx"] is True
        assert kwargs["ex"] == 72 * 3600
    
    @pytest.mark.asyncio
    async def test_existing_key_is_processed(self):
        redis_client = AsyncMock()
        redis_client.set.return_value = None
        store = RedisIdempotencyStore(redis_client)
        
        check = await store.check_and_mark("evt-1")
        
        assert check.already_processed is True
    
    @pytest.mark.asyncio
    async def test_redis_failure_raises_infrastructure_error(self):
        redis_client = AsyncMock()
        redis_client.set.side_effect = RedisConnectionError("connection refused")
        store = RedisIdempotencyStore(redis_client)
        
        with pytest.raises(InfrastructureError) as exc_info:
            await store.check_and_mark("evt-1")
        
        assert exc_info.value.code == "IDEMPOTENCY_UNAVAILABLE"
    
    @pytest.mark.asyncio
    async def test_release_deletes_key(self):
        redis_client = AsyncMock()
        store = RedisIdempotencyStore(redis_client)
        
        await store.release("evt-1")
        
        redis_client.delete.assert_awaited_once_with("pasarela:event:evt-1")
