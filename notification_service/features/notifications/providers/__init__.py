"""Provider adapters for every delivery channel."""

from __future__ import annotations

from .base import (
    BaseProviderAdapter,
    DeliveryTarget,
    OutboundMessage,
    ProviderAdapter,
    SendResult,
    StatusResult,
)
from .chat import ChatAdapter
from .email import SmtpEmailAdapter
from .in_app import InAppAdapter
from .registry import AdapterRegistry, build_adapter_registry, build_http_client
from .sms import MtnCarrierProfile, OrangeCarrierProfile, SmsCarrierAdapter

__all__ = [
    "AdapterRegistry",
    "BaseProviderAdapter",
    "ChatAdapter",
    "DeliveryTarget",
    "InAppAdapter",
    "MtnCarrierProfile",
    "OrangeCarrierProfile",
    "OutboundMessage",
    "ProviderAdapter",
    "SendResult",
    "SmsCarrierAdapter",
    "SmtpEmailAdapter",
    "StatusResult",
    "build_adapter_registry",
    "build_http_client",
]
