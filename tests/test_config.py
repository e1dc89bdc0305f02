"""
Tests para la configuración desde entorno.
"""

import pytest
from pydantic import ValidationError

from pasarela.config import Settings
from pasarela.schemas import ProviderName


class TestSettings:
    
    def test_only_configured_providers(self):
        settings = Settings(
            _env_file=None,
            PAYMENT_PROVIDER=ProviderName.FLOW,
            FLOW_API_KEY="flow-key",
            FLOW_SECRET_KEY="flow-secret",
            PUBLIC_BASE_URL="https://shop.example.com",
            PAYPAL_CLIENT_ID="",
            GLOBAL66_API_KEY="",
            MP_ACCESS_TOKEN="",
        )
        
        config = settings.to_gateway_config()
        
        assert config.provider == ProviderName.FLOW
        assert config.configured_providers() == [ProviderName.FLOW]
        assert config.flow.secret_key == "flow-secret"
        assert config.flow.api_base_url is None
        assert config.notification_url(ProviderName.FLOW) == "https://shop.example.com/api/webhooks/flow"
    
    def test_active_provider_requires_credentials(self):
        settings = Settings(
            _env_file=None,
            PAYMENT_PROVIDER=ProviderName.PAYPAL,
            FLOW_API_KEY="flow-key",
            PAYPAL_CLIENT_ID="",
        )
        
        with pytest.raises(ValidationError):
            settings.to_gateway_config()
