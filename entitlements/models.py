"""
Entitlement Data Models

Defines the core data structures shared by the plan catalog, subscription
state, usage counters, payment orders and role unlocks.

All records serialize to camelCase Firestore documents through
to_dict()/from_dict(). Timestamps are timezone-aware UTC datetimes.
"""

from enum import Enum
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone

MINOR_UNIT = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Read a stored timestamp. Naive values are treated as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def to_money(value: Any) -> Decimal:
    """Coerce a stored price to a Decimal with minor-unit precision."""
    if isinstance(value, Decimal):
        amount = value
    else:
        amount = Decimal(str(value if value is not None else 0))
    return amount.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount (rupees) to gateway minor units (paise)."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


class Role(str, Enum):
    """Professional roles that can hold a subscription"""
    TEACHER = "teacher"
    ARTIST = "artist"
    DIRECTOR = "director"
    DOCTOR = "doctor"
    ASTROLOGER = "astrologer"


class SubscriptionStatus(str, Enum):
    """Subscription status states"""
    ACTIVE = "active"
    TRIAL = "trial"
    INACTIVE = "inactive"
    EXPIRED = "expired"


ENTITLED_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL)


class PeriodGranularity(str, Enum):
    """Usage window a quota is counted over"""
    DAILY = "daily"
    MONTHLY = "monthly"


class ResourceKind(str, Enum):
    """
    Quota-tracked resource kinds.

    Published kinds go through the content safety check before they
    consume quota.
    """
    # teacher
    COURSES = "courses"
    LESSONS = "lessons"
    STUDENTS = "students"
    # artist
    TRACK_UPLOADS = "track_uploads"
    ALBUM_PUBLISHES = "album_publishes"
    # director
    PROJECTS = "projects"
    ARTIST_DISCOVERY = "artist_discovery"
    SHORTLISTS = "shortlists"
    # doctor
    PROGRAMS = "programs"
    THERAPY_TEMPLATES = "therapy_templates"
    ARTICLES = "articles"
    # astrologer
    CLIENTS = "clients"
    READINGS = "readings"
    ASTRO_TEMPLATES = "astro_templates"
    RASI_RECOMMENDATIONS = "rasi_recommendations"
    POSTS = "posts"
    # every role
    MUSIC_GENERATIONS = "music_generations"

    @property
    def published(self) -> bool:
        return self in _PUBLISHED_KINDS

    @property
    def held(self) -> bool:
        """Kinds that occupy a slot until released, on top of any period quota"""
        return self in _HELD_KINDS

    @property
    def label(self) -> str:
        """Human readable name used in quota messages"""
        return self.value.replace("_", " ")


_PUBLISHED_KINDS = frozenset({
    ResourceKind.ALBUM_PUBLISHES,
    ResourceKind.ARTICLES,
    ResourceKind.POSTS,
})

_HELD_KINDS = frozenset({
    ResourceKind.COURSES,
    ResourceKind.STUDENTS,
    ResourceKind.PROJECTS,
    ResourceKind.CLIENTS,
})


class OrderKind(str, Enum):
    SUBSCRIPTION = "subscription"
    COURSE = "course"


class OrderStatus(str, Enum):
    """Payment order lifecycle states. Only CREATED is non-terminal."""
    CREATED = "created"
    VERIFIED = "verified"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass
class UsageLimit:
    """
    Per-kind quota for one plan.

    None (or any negative number) means unbounded; 0 means the kind is
    disabled on this plan. max_active caps how many resources of a held
    kind may exist at once, independent of the period windows.
    """
    daily: Optional[int] = None
    monthly: Optional[int] = None
    max_active: Optional[int] = None

    def for_granularity(self, granularity: PeriodGranularity) -> Optional[int]:
        value = self.daily if granularity == PeriodGranularity.DAILY else self.monthly
        if value is None or value < 0:
            return None
        return value

    def configured(self) -> List[PeriodGranularity]:
        return [
            g for g in (PeriodGranularity.DAILY, PeriodGranularity.MONTHLY)
            if self.for_granularity(g) is not None
        ]

    def capacity(self) -> Optional[int]:
        if self.max_active is None or self.max_active < 0:
            return None
        return self.max_active

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        if self.daily is not None:
            data["daily"] = self.daily
        if self.monthly is not None:
            data["monthly"] = self.monthly
        if self.max_active is not None:
            data["maxActive"] = self.max_active
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "UsageLimit":
        # A bare number is read as a monthly cap
        if isinstance(data, int):
            return cls(monthly=data)
        data = data or {}
        daily = data.get("daily")
        monthly = data.get("monthly")
        max_active = data.get("maxActive")
        return cls(
            daily=int(daily) if daily is not None else None,
            monthly=int(monthly) if monthly is not None else None,
            max_active=int(max_active) if max_active is not None else None,
        )


@dataclass
class Plan:
    """A subscription plan offered to one role"""
    id: str
    role: Role
    name: str
    price: Decimal
    duration_days: int = 30
    currency: str = "INR"
    features: List[str] = field(default_factory=list)
    usage_limits: Dict[ResourceKind, UsageLimit] = field(default_factory=dict)
    yearly_price: Optional[Decimal] = None
    yearly_discount_percent: int = 0
    yearly_duration_days: int = 365
    active: bool = True

    def __post_init__(self):
        self.price = to_money(self.price)
        if self.yearly_price is not None:
            self.yearly_price = to_money(self.yearly_price)
        if self.duration_days <= 0:
            raise ValueError(f"Plan {self.id}: durationDays must be greater than 0")
        if self.yearly_duration_days <= 0:
            raise ValueError(f"Plan {self.id}: yearlyDurationDays must be greater than 0")

    @property
    def is_free(self) -> bool:
        return self.price == 0

    def limit_for(self, kind: ResourceKind) -> UsageLimit:
        return self.usage_limits.get(kind) or UsageLimit()

    def amount_for(self, cycle: BillingCycle = BillingCycle.MONTHLY) -> Decimal:
        """Price charged for one billing cycle, in major units"""
        if cycle == BillingCycle.YEARLY:
            if self.yearly_price is not None:
                return self.yearly_price
            discount = Decimal(100 - self.yearly_discount_percent) / Decimal(100)
            return to_money(self.price * 12 * discount)
        return self.price

    def duration_for(self, cycle: BillingCycle = BillingCycle.MONTHLY) -> int:
        if cycle == BillingCycle.YEARLY:
            return self.yearly_duration_days
        return self.duration_days

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "name": self.name,
            "price": float(self.price),
            "currency": self.currency,
            "durationDays": self.duration_days,
            "features": list(self.features),
            "usageLimits": {
                kind.value: limit.to_dict() for kind, limit in self.usage_limits.items()
            },
            "yearlyPrice": float(self.yearly_price) if self.yearly_price is not None else None,
            "yearlyDiscountPercent": self.yearly_discount_percent,
            "yearlyDurationDays": self.yearly_duration_days,
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        limits = {}
        for key, value in (data.get("usageLimits") or {}).items():
            try:
                kind = ResourceKind(key)
            except ValueError:
                # Limits for kinds this service does not track are ignored
                continue
            limits[kind] = UsageLimit.from_dict(value)

        yearly_price = data.get("yearlyPrice")
        return cls(
            id=data["id"],
            role=Role(data["role"]),
            name=data.get("name", data["id"]),
            price=to_money(data.get("price", 0)),
            currency=data.get("currency", "INR"),
            duration_days=int(data.get("durationDays") or data.get("duration") or 30),
            features=list(data.get("features") or []),
            usage_limits=limits,
            yearly_price=to_money(yearly_price) if yearly_price is not None else None,
            yearly_discount_percent=int(data.get("yearlyDiscountPercent") or 0),
            yearly_duration_days=int(data.get("yearlyDurationDays") or 365),
            active=data.get("active", True),
        )


@dataclass
class SubscriptionState:
    """One user's subscription record"""
    user_id: str
    role: Optional[Role] = None
    plan_id: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    expires_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    last_order_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    def is_lapsed(self, now: datetime) -> bool:
        """Active or trial on paper, but past its expiry"""
        return (
            self.status in ENTITLED_STATUSES
            and self.expires_at is not None
            and self.expires_at <= now
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "role": self.role.value if self.role else None,
            "planId": self.plan_id,
            "status": self.status.value,
            "expiresAt": self.expires_at,
            "startedAt": self.started_at,
            "lastOrderId": self.last_order_id,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, user_id: str, data: Dict[str, Any]) -> "SubscriptionState":
        role = data.get("role")
        try:
            status = SubscriptionStatus(data.get("status") or "inactive")
        except ValueError:
            status = SubscriptionStatus.INACTIVE
        return cls(
            user_id=data.get("userId", user_id),
            role=Role(role) if role else None,
            plan_id=data.get("planId"),
            status=status,
            expires_at=parse_datetime(data.get("expiresAt")),
            started_at=parse_datetime(data.get("startedAt")),
            last_order_id=data.get("lastOrderId"),
            updated_at=parse_datetime(data.get("updatedAt")),
        )


@dataclass
class PaymentOrder:
    """A single checkout attempt"""
    id: str
    user_id: str
    kind: OrderKind
    target_id: str
    amount: Decimal
    currency: str = "INR"
    billing_cycle: Optional[BillingCycle] = None
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    status: OrderStatus = OrderStatus.CREATED
    failure_reason: Optional[str] = None
    fulfilled: bool = False
    result: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def amount_minor(self) -> int:
        return to_minor_units(self.amount)

    @property
    def is_terminal(self) -> bool:
        return self.status != OrderStatus.CREATED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "kind": self.kind.value,
            "targetId": self.target_id,
            "amount": float(self.amount),
            "amountMinor": self.amount_minor,
            "currency": self.currency,
            "billingCycle": self.billing_cycle.value if self.billing_cycle else None,
            "gatewayOrderId": self.gateway_order_id,
            "gatewayPaymentId": self.gateway_payment_id,
            "status": self.status.value,
            "failureReason": self.failure_reason,
            "fulfilled": self.fulfilled,
            "result": self.result,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentOrder":
        cycle = data.get("billingCycle")
        return cls(
            id=data["id"],
            user_id=data["userId"],
            kind=OrderKind(data["kind"]),
            target_id=data["targetId"],
            amount=to_money(data.get("amount", 0)),
            currency=data.get("currency", "INR"),
            billing_cycle=BillingCycle(cycle) if cycle else None,
            gateway_order_id=data.get("gatewayOrderId"),
            gateway_payment_id=data.get("gatewayPaymentId"),
            status=OrderStatus(data.get("status", "created")),
            failure_reason=data.get("failureReason"),
            fulfilled=bool(data.get("fulfilled", False)),
            result=data.get("result"),
            created_at=parse_datetime(data.get("createdAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
        )


@dataclass
class RoleUnlockRecord:
    user_id: str
    unlocked_role: Role
    source_course_id: str
    unlocked_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "unlockedRole": self.unlocked_role.value,
            "sourceCourseId": self.source_course_id,
            "unlockedAt": self.unlocked_at,
        }


@dataclass
class Course:
    """Purchasable course. Owned by the course catalog, read only here."""
    id: str
    title: str
    price: Decimal
    currency: str = "INR"
    unlocks_role: Optional[Role] = None
    active: bool = True

    @classmethod
    def from_dict(cls, course_id: str, data: Dict[str, Any]) -> "Course":
        unlocks = data.get("unlocksRole")
        return cls(
            id=data.get("id", course_id),
            title=data.get("title", course_id),
            price=to_money(data.get("price", 0)),
            currency=data.get("currency", "INR"),
            unlocks_role=Role(unlocks) if unlocks else None,
            active=data.get("active", True),
        )


@dataclass
class RequestContext:
    """Authenticated caller for one request"""
    user_id: str
    role: Optional[Role] = None
    roles: List[Role] = field(default_factory=list)
    is_admin: bool = False
    email: Optional[str] = None
    subscription: Optional[SubscriptionState] = None
