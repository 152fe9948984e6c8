"""Shipping carrier clients and method-based carrier selection."""

from typing import Optional

import httpx
from libs.common.config import get_settings
from services.fulfillment_service.carriers.base import CarrierClient, CarrierError
from services.fulfillment_service.carriers.enviopack import (
    ENVIOPACK_PROVIDER,
    EnviopackClient,
)
from services.fulfillment_service.carriers.simulated import SimulatedCarrier

# Checked in order against the lower-cased shipping method label.
_PROVIDER_KEYWORDS = (
    ("oca", "OCA"),
    ("andreani", "Andreani"),
    ("correo", "Correo Argentino"),
)


def provider_for_method(method: Optional[str]) -> str:
    label = (method or "").lower()
    for keyword, provider in _PROVIDER_KEYWORDS:
        if keyword in label:
            return provider
    return ENVIOPACK_PROVIDER


def select_carrier(
    method: Optional[str],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> CarrierClient:
    """Pick the carrier client for a shipping method label.

    Only Envíopack has a live integration; every other provider (and
    Envíopack without credentials) gets the simulated carrier.
    """
    provider = provider_for_method(method)
    if provider == ENVIOPACK_PROVIDER and get_settings().enviopack_configured:
        return EnviopackClient(transport=transport)
    return SimulatedCarrier(provider)


__all__ = [
    "CarrierClient",
    "CarrierError",
    "ENVIOPACK_PROVIDER",
    "EnviopackClient",
    "SimulatedCarrier",
    "provider_for_method",
    "select_carrier",
]
