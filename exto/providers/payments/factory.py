from __future__ import annotations

from exto.core.config import get_settings
from exto.core.errors import ProviderConfigError
from exto.providers.payments.base import PaymentGateway
from exto.providers.payments.fake import FakePaymentGateway
from exto.providers.payments.stripe_gateway import StripePaymentGateway


def get_payment_gateway() -> PaymentGateway:
    settings = get_settings()
    provider = (settings.payment_provider or "stripe").lower()

    if provider == "fake":
        return FakePaymentGateway()
    if provider == "stripe":
        return StripePaymentGateway()

    raise ProviderConfigError(f"Unsupported payment provider: {provider}")
