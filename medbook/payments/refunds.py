"""Boundary to the payment provider used when a cancellation earns a refund."""

import logging
from abc import ABC, abstractmethod

from medbook.core import config
from medbook.scheduling.errors import RefundError

logger = logging.getLogger(__name__)


class RefundGateway(ABC):
    """Issues a full refund for the payment behind an appointment.

    Implementations return the provider's refund id and raise ``RefundError``
    (or let provider exceptions escape) when the refund is not issued.
    """

    @abstractmethod
    def refund(self, payment_intent_id: str) -> str:
        ...


class UnconfiguredRefundGateway(RefundGateway):
    def refund(self, payment_intent_id: str) -> str:
        logger.warning('Refund requested for %s but no payment provider is configured', payment_intent_id)
        raise RefundError('Payment processing is not configured.')


_gateways: dict[str, RefundGateway] = {}


def register_refund_gateway(provider: str, gateway: RefundGateway) -> None:
    _gateways[provider.strip().lower()] = gateway


def get_refund_gateway() -> RefundGateway:
    provider = config.PAYMENT_PROVIDER.strip().lower()
    return _gateways.get(provider, UnconfiguredRefundGateway())
