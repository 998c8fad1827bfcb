"""
Geolocation / network reputation signal for inbound trade requests.

The edge proxy resolves the caller's country and VPN/Tor status and forwards them
as X-Country-Iso and X-Vpn headers; this dependency turns them into a NetworkSignal.
"""

import logging
from typing import Optional

from fastapi import Header

from services.eligibility_checker import NetworkSignal

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


def parse_network_signal(country_iso: Optional[str], vpn_flag: Optional[str]) -> NetworkSignal:
    country = (country_iso or "").strip().upper() or None
    if country is not None and (len(country) != 2 or not country.isalpha()):
        logger.warning(f"GEOLOCATION_INVALID_COUNTRY: ignoring {country_iso!r}")
        country = None
    is_vpn = (vpn_flag or "").strip().lower() in TRUTHY
    return NetworkSignal(country_iso=country, is_vpn_or_tor=is_vpn)


async def get_network_signal(
    x_country_iso: Optional[str] = Header(None),
    x_vpn: Optional[str] = Header(None),
) -> NetworkSignal:
    """FastAPI dependency"""
    return parse_network_signal(x_country_iso, x_vpn)
