"""
Trade eligibility policy.

Checks run in a fixed order and the first failure wins, so a caller always gets
the same error for the same inputs. Nothing here touches the database; the
lifecycle manager loads the offer, the requester and the completed-trade count
and passes them in.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from models import CountryLimitMode, Offer, User, UserHealth
from utils.error_handler import (
    AccountNotActive,
    AmountOutOfBounds,
    FullNameRequired,
    GeoRestricted,
    InsufficientTradeHistory,
    OfferDeauthorized,
    OfferInactive,
    OfferNotFound,
    SelfTrade,
    UserNotFound,
    VerificationRequired,
)

logger = logging.getLogger(__name__)

MIN_FULL_NAME_LENGTH = 2


@dataclass(frozen=True)
class NetworkSignal:
    """Geolocation and network reputation attached to an inbound request"""

    country_iso: Optional[str] = None
    is_vpn_or_tor: bool = False


def _normalize_countries(countries: Optional[Iterable[str]]) -> set:
    return {c.strip().upper() for c in (countries or []) if c and c.strip()}


class EligibilityChecker:
    """Ordered, read-only policy evaluation before a trade is opened"""

    def check(
        self,
        requester: Optional[User],
        offer: Optional[Offer],
        fiat_amount: Decimal,
        completed_trades: int,
        network: Optional[NetworkSignal] = None,
    ) -> None:
        """Raise the first failing rule's error, or return None when eligible"""
        network = network or NetworkSignal()

        # 1. Offer exists and is listed
        if offer is None:
            raise OfferNotFound("Offer not found")
        if not offer.is_listed:
            raise OfferInactive(f"Offer {offer.id} is not active")

        if requester is None:
            raise UserNotFound("Requesting user not found")

        # 2. No self-trading
        if requester.id == offer.user_id:
            raise SelfTrade("You cannot trade against your own offer")

        # 3. Account health
        if requester.health != UserHealth.ACTIVE.value:
            raise AccountNotActive(requester.health)

        # 4. Moderator deauthorization
        if offer.deauthorized:
            raise OfferDeauthorized(f"Offer {offer.id} has been deauthorized by a moderator")

        # 5. ID verification
        if offer.id_verification and not requester.is_verified:
            raise VerificationRequired("This offer requires a verified account")

        # 6. Full legal name
        if offer.full_name_required:
            name = (requester.name or "").strip()
            if len(name) < MIN_FULL_NAME_LENGTH:
                raise FullNameRequired("This offer requires your full name on the account")

        # 7. Amount bounds, zero means unbounded
        self._check_bounds(offer, fiat_amount)

        # 8. New trader restriction
        if offer.new_trader_limit and completed_trades < (offer.minimum_trades or 0):
            raise InsufficientTradeHistory(
                f"This offer requires at least {offer.minimum_trades} completed trades",
                {"required": offer.minimum_trades, "completed": completed_trades},
            )

        # 9. VPN / Tor
        if offer.vpn_blocked and network.is_vpn_or_tor:
            raise GeoRestricted("This offer does not accept trades from VPN or Tor networks")

        # 10. Country allow/block list, applied only when the country is known
        self._check_country(offer, network.country_iso)

        logger.debug(f"ELIGIBILITY_PASSED: user {requester.id} offer {offer.id} amount {fiat_amount}")

    @staticmethod
    def _check_bounds(offer: Offer, fiat_amount: Decimal) -> None:
        minimum = offer.minimum or Decimal("0")
        maximum = offer.maximum or Decimal("0")

        if minimum > 0 and fiat_amount < minimum:
            raise AmountOutOfBounds(
                f"Amount {fiat_amount} is below the offer minimum of {minimum} {offer.currency}",
                {"minimum": str(minimum), "requested": str(fiat_amount)},
            )
        if maximum > 0 and fiat_amount > maximum:
            raise AmountOutOfBounds(
                f"Amount {fiat_amount} is above the offer maximum of {maximum} {offer.currency}",
                {"maximum": str(maximum), "requested": str(fiat_amount)},
            )

    @staticmethod
    def _check_country(offer: Offer, country_iso: Optional[str]) -> None:
        if not country_iso:
            return

        country = country_iso.strip().upper()
        mode = offer.limit_countries or CountryLimitMode.NONE.value

        if mode == CountryLimitMode.ALLOWED.value:
            if country not in _normalize_countries(offer.allowed_countries):
                raise GeoRestricted(
                    f"This offer is not available in your country ({country})",
                    {"country": country},
                )
        elif mode == CountryLimitMode.BLOCKED.value:
            if country in _normalize_countries(offer.blocked_countries):
                raise GeoRestricted(
                    f"This offer is not available in your country ({country})",
                    {"country": country},
                )
