"""
Eligibility Checker Tests
Each rule in isolation, plus precedence when several rules fail at once
"""

from decimal import Decimal

import pytest

from models import CountryLimitMode, Offer, OfferStatus, OfferType, User, UserHealth
from services.eligibility_checker import EligibilityChecker, NetworkSignal
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

OWNER_ID = 1
REQUESTER_ID = 2


def make_offer(**overrides) -> Offer:
    values = dict(
        id=10,
        user_id=OWNER_ID,
        offer_type=OfferType.SELL.value,
        currency="USD",
        margin=Decimal("5"),
        minimum=Decimal("0"),
        maximum=Decimal("0"),
        active=True,
        status=OfferStatus.ACTIVE.value,
        deauthorized=False,
        id_verification=False,
        full_name_required=False,
        new_trader_limit=False,
        minimum_trades=0,
        vpn_blocked=False,
        limit_countries=CountryLimitMode.NONE.value,
        blocked_countries=[],
        allowed_countries=[],
    )
    values.update(overrides)
    return Offer(**values)


def make_user(**overrides) -> User:
    values = dict(
        id=REQUESTER_ID,
        username="requester",
        name="Rita Requester",
        health=UserHealth.ACTIVE.value,
        is_verified=True,
        balance=Decimal("0"),
    )
    values.update(overrides)
    return User(**values)


@pytest.fixture
def checker():
    return EligibilityChecker()


class TestEligibilityRules:
    """Each rule rejects on its own"""

    def test_eligible_request_passes(self, checker):
        assert checker.check(make_user(), make_offer(), Decimal("100"), 0) is None

    def test_missing_offer(self, checker):
        with pytest.raises(OfferNotFound):
            checker.check(make_user(), None, Decimal("100"), 0)

    @pytest.mark.parametrize("overrides", [
        {"active": False},
        {"status": OfferStatus.PAUSED.value},
        {"status": OfferStatus.INACTIVE.value},
    ])
    def test_inactive_offer(self, checker, overrides):
        with pytest.raises(OfferInactive):
            checker.check(make_user(), make_offer(**overrides), Decimal("100"), 0)

    def test_missing_requester(self, checker):
        with pytest.raises(UserNotFound):
            checker.check(None, make_offer(), Decimal("100"), 0)

    def test_self_trade(self, checker):
        with pytest.raises(SelfTrade):
            checker.check(make_user(id=OWNER_ID), make_offer(), Decimal("100"), 0)

    @pytest.mark.parametrize("health", ["banned", "on_hold", "suspended", "blocked"])
    def test_account_health_named_in_error(self, checker, health):
        with pytest.raises(AccountNotActive) as exc_info:
            checker.check(make_user(health=health), make_offer(), Decimal("100"), 0)

        assert exc_info.value.health == health
        assert health in exc_info.value.message

    def test_deauthorized_offer(self, checker):
        with pytest.raises(OfferDeauthorized):
            checker.check(make_user(), make_offer(deauthorized=True), Decimal("100"), 0)

    def test_verification_required(self, checker):
        offer = make_offer(id_verification=True)

        with pytest.raises(VerificationRequired):
            checker.check(make_user(is_verified=False), offer, Decimal("100"), 0)
        checker.check(make_user(is_verified=True), offer, Decimal("100"), 0)

    @pytest.mark.parametrize("name", [None, "", " ", "J", " J "])
    def test_full_name_required_rejects_short_names(self, checker, name):
        with pytest.raises(FullNameRequired):
            checker.check(make_user(name=name), make_offer(full_name_required=True), Decimal("100"), 0)

    def test_full_name_of_two_characters_is_enough(self, checker):
        checker.check(make_user(name="Jo"), make_offer(full_name_required=True), Decimal("100"), 0)

    @pytest.mark.parametrize("amount, ok", [
        ("49.99", False),
        ("50", True),
        ("500", True),
        ("500.01", False),
    ])
    def test_amount_bounds_are_inclusive(self, checker, amount, ok):
        offer = make_offer(minimum=Decimal("50"), maximum=Decimal("500"))
        if ok:
            checker.check(make_user(), offer, Decimal(amount), 0)
        else:
            with pytest.raises(AmountOutOfBounds):
                checker.check(make_user(), offer, Decimal(amount), 0)

    def test_zero_bounds_mean_unbounded(self, checker):
        offer = make_offer(minimum=Decimal("0"), maximum=Decimal("0"))
        checker.check(make_user(), offer, Decimal("0.01"), 0)
        checker.check(make_user(), offer, Decimal("999999"), 0)

    def test_zero_maximum_keeps_minimum(self, checker):
        offer = make_offer(minimum=Decimal("50"), maximum=Decimal("0"))
        with pytest.raises(AmountOutOfBounds):
            checker.check(make_user(), offer, Decimal("10"), 0)
        checker.check(make_user(), offer, Decimal("100000"), 0)

    def test_new_trader_limit(self, checker):
        offer = make_offer(new_trader_limit=True, minimum_trades=3)

        with pytest.raises(InsufficientTradeHistory):
            checker.check(make_user(), offer, Decimal("100"), 2)
        checker.check(make_user(), offer, Decimal("100"), 3)

    def test_minimum_trades_ignored_without_new_trader_limit(self, checker):
        offer = make_offer(new_trader_limit=False, minimum_trades=3)
        checker.check(make_user(), offer, Decimal("100"), 0)

    def test_vpn_blocked(self, checker):
        offer = make_offer(vpn_blocked=True)

        with pytest.raises(GeoRestricted):
            checker.check(make_user(), offer, Decimal("100"), 0, NetworkSignal("US", True))
        checker.check(make_user(), offer, Decimal("100"), 0, NetworkSignal("US", False))

    def test_vpn_allowed_when_not_blocked(self, checker):
        checker.check(make_user(), make_offer(), Decimal("100"), 0, NetworkSignal("US", True))

    def test_blocked_countries(self, checker):
        offer = make_offer(limit_countries=CountryLimitMode.BLOCKED.value, blocked_countries=["NG", "ru"])

        with pytest.raises(GeoRestricted):
            checker.check(make_user(), offer, Decimal("100"), 0, NetworkSignal("RU"))
        checker.check(make_user(), offer, Decimal("100"), 0, NetworkSignal("US"))

    def test_allowed_countries(self, checker):
        offer = make_offer(limit_countries=CountryLimitMode.ALLOWED.value, allowed_countries=["US", "CA"])

        with pytest.raises(GeoRestricted):
            checker.check(make_user(), offer, Decimal("100"), 0, NetworkSignal("gb"))
        checker.check(make_user(), offer, Decimal("100"), 0, NetworkSignal("ca"))

    def test_unknown_country_skips_country_rules(self, checker):
        offer = make_offer(limit_countries=CountryLimitMode.ALLOWED.value, allowed_countries=["US"])
        checker.check(make_user(), offer, Decimal("100"), 0, NetworkSignal(None))

    def test_country_lists_ignored_in_none_mode(self, checker):
        offer = make_offer(limit_countries=CountryLimitMode.NONE.value, blocked_countries=["US"])
        checker.check(make_user(), offer, Decimal("100"), 0, NetworkSignal("US"))


class TestEligibilityPrecedence:
    """First failing rule wins"""

    def test_inactive_offer_beats_self_trade(self, checker):
        with pytest.raises(OfferInactive):
            checker.check(make_user(id=OWNER_ID), make_offer(active=False), Decimal("100"), 0)

    def test_self_trade_beats_account_health(self, checker):
        with pytest.raises(SelfTrade):
            checker.check(make_user(id=OWNER_ID, health="banned"), make_offer(), Decimal("100"), 0)

    def test_account_health_beats_deauthorization(self, checker):
        with pytest.raises(AccountNotActive):
            checker.check(make_user(health="suspended"), make_offer(deauthorized=True), Decimal("100"), 0)

    def test_verification_beats_amount_bounds(self, checker):
        offer = make_offer(id_verification=True, minimum=Decimal("50"))
        with pytest.raises(VerificationRequired):
            checker.check(make_user(is_verified=False), offer, Decimal("10"), 0)

    def test_amount_bounds_beat_trade_history(self, checker):
        offer = make_offer(minimum=Decimal("50"), new_trader_limit=True, minimum_trades=5)
        with pytest.raises(AmountOutOfBounds):
            checker.check(make_user(), offer, Decimal("10"), 0)

    def test_trade_history_beats_vpn(self, checker):
        offer = make_offer(new_trader_limit=True, minimum_trades=5, vpn_blocked=True)
        with pytest.raises(InsufficientTradeHistory):
            checker.check(make_user(), offer, Decimal("100"), 0, NetworkSignal("US", True))
