"""
Pasarela de pagos multi-proveedor (Flow, Global66, PayPal, Mercado Pago).
"""

from pasarela.services.gateway import PaymentGateway

__version__ = "1.0.0"

__all__ = ["PaymentGateway", "__version__"]
