"""
P2P Trade Escrow Engine - Database Schema
=========================================

Schema for the fiat-for-crypto trade lifecycle:
- Users with an internal BTC balance (8 decimal places)
- Offers carrying the eligibility policy a trade is checked against
- Trades governed by the lifecycle state machine
- Append-only ledger of every escrow balance movement

Monetary columns are fixed-point Numeric: scale 2 for fiat, scale 8 for crypto.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from sqlalchemy import (
    Integer, BigInteger, String, Numeric, DateTime, Boolean, Text,
    ForeignKey, Index, CheckConstraint, JSON
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from utils.datetime_helpers import get_naive_utc_now


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# SQLite only auto-increments INTEGER PRIMARY KEY columns
IdType = BigInteger().with_variant(Integer, "sqlite")


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class TradeStatus(Enum):
    """Trade lifecycle states"""
    OPENED = "OPENED"
    PAID = "PAID"
    SUCCESSFUL = "SUCCESSFUL"
    CANCELLED_BUYER = "CANCELLED_BUYER"
    CANCELLED_SELLER = "CANCELLED_SELLER"
    CANCELLED_SYSTEM = "CANCELLED_SYSTEM"
    DISPUTED = "DISPUTED"
    AWARDED_BUYER = "AWARDED_BUYER"
    AWARDED_SELLER = "AWARDED_SELLER"


class OfferType(Enum):
    """Direction of an offer from the owner's point of view"""
    BUY = "buy"
    SELL = "sell"


class OfferStatus(Enum):
    """Offer listing status"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    PAUSED = "paused"


class CountryLimitMode(Enum):
    """How an offer restricts counterparties by country"""
    NONE = "none"
    BLOCKED = "blocked"
    ALLOWED = "allowed"


class UserHealth(Enum):
    """Account health as maintained by the account subsystem"""
    ACTIVE = "active"
    BANNED = "banned"
    ON_HOLD = "on_hold"
    SUSPENDED = "suspended"
    BLOCKED = "blocked"


class UserRole(Enum):
    """User roles"""
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class DisputeParty(Enum):
    """Trade party that opened a dispute or was awarded one"""
    BUYER = "buyer"
    SELLER = "seller"


class LedgerEntryType(Enum):
    """Kinds of escrow balance movement"""
    ESCROW_LOCK = "escrow_lock"
    ESCROW_REFUND = "escrow_refund"
    ESCROW_RELEASE_BUYER = "escrow_release_buyer"
    ESCROW_RELEASE_SELLER = "escrow_release_seller"


class ExpiryFlag(Enum):
    """Marker set on trades cancelled by the expiry sweep"""
    NOT_EXPIRED = "NOT_EXPIRED"
    EXPIRED = "EXPIRED"


# ============================================================================
# MODELS
# ============================================================================

class User(Base):
    """Trader account as seen by the escrow engine"""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    health: Mapped[str] = mapped_column(String(20), default=UserHealth.ACTIVE.value, nullable=False)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.USER.value, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Internal BTC balance, mutated only through the escrow ledger during a trade
    balance: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),
    )

    @property
    def is_moderator(self) -> bool:
        return self.role in (UserRole.MODERATOR.value, UserRole.ADMIN.value)

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', balance={self.balance})>"


class Offer(Base):
    """Standing listing a trade is opened against"""
    __tablename__ = "offers"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    offer_type: Mapped[str] = mapped_column(String(10), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Signed percentage applied to the market rate
    margin: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    # Zero means "no bound"
    minimum: Mapped[Decimal] = mapped_column(Numeric(20, 2), default=Decimal("0"), nullable=False)
    maximum: Mapped[Decimal] = mapped_column(Numeric(20, 2), default=Decimal("0"), nullable=False)

    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=OfferStatus.ACTIVE.value, nullable=False)

    # Eligibility policy
    deauthorized: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    id_verification: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    full_name_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    new_trader_limit: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    minimum_trades: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    vpn_blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    limit_countries: Mapped[str] = mapped_column(String(10), default=CountryLimitMode.NONE.value, nullable=False)
    blocked_countries: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    allowed_countries: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    @property
    def is_listed(self) -> bool:
        return self.active and self.status == OfferStatus.ACTIVE.value

    def __repr__(self):
        return f"<Offer(id={self.id}, type='{self.offer_type}', currency='{self.currency}', margin={self.margin})>"


class Trade(Base):
    """One buyer and seller transacting against an offer"""
    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    # Idempotency key supplied by the client
    request_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    buyer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    seller_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    offer_id: Mapped[int] = mapped_column(ForeignKey("offers.id"), nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Monetary fields
    fiat_amount_original: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    fiat_amount_with_margin: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    btc_amount_original: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    btc_amount_with_margin: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=TradeStatus.OPENED.value, nullable=False, index=True)

    # Lifecycle annotations
    cancelled: Mapped[str] = mapped_column(Text, default="NA", nullable=False)
    escrow_return: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    moderator_flag: Mapped[str] = mapped_column(String(50), default="NA", nullable=False)
    flag_expired: Mapped[str] = mapped_column(String(20), default=ExpiryFlag.NOT_EXPIRED.value, nullable=False)

    # Dispute fields
    dispute_started: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dispute_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    dispute_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    dispute_explanation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dispute_started_by: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    dispute_mod_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dispute_time_resolve: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    award_settled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    expiry_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    # Optimistic lock counter, bumped by the ORM on every UPDATE
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint("buyer_id <> seller_id", name="ck_trades_distinct_parties"),
        Index("ix_trades_status_expiry", "status", "expiry_time"),
    )

    def party_of(self, user_id: int) -> Optional[DisputeParty]:
        """Which side of the trade a user is on, or None for outsiders"""
        if user_id == self.buyer_id:
            return DisputeParty.BUYER
        if user_id == self.seller_id:
            return DisputeParty.SELLER
        return None

    def __repr__(self):
        return f"<Trade(id={self.id}, request_id='{self.request_id}', status='{self.status}')>"


class BalanceLedgerEntry(Base):
    """Audit row for every escrow balance mutation"""
    __tablename__ = "balance_ledger_entries"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    trade_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("trades.id", ondelete="SET NULL"), nullable=True, index=True
    )
    entry_type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    def __repr__(self):
        return f"<BalanceLedgerEntry(user_id={self.user_id}, type='{self.entry_type}', amount={self.amount})>"
