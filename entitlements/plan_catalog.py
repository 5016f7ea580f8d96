"""
Plan Catalog

Admin-editable table of subscription plans per role, stored in the
subscriptionPlans collection. Ships with a built-in default catalog that
can be seeded into an empty store.

Plan edits are forward-looking: expiry is written onto the subscription at
settlement time and counters never reference plan data, so editing a plan
never rewrites an existing subscriber's expiry or usage.
"""

from decimal import Decimal
from typing import Dict, List, Optional

from entitlements.document_store import DocumentStore
from entitlements.models import Plan, ResourceKind, Role, UsageLimit
from utils.logger import logger

PLANS_COLLECTION = "subscriptionPlans"


# Resource kinds each role may create or publish
ROLE_RESOURCE_KINDS: Dict[Role, List[ResourceKind]] = {
    Role.TEACHER: [
        ResourceKind.COURSES,
        ResourceKind.LESSONS,
        ResourceKind.STUDENTS,
        ResourceKind.MUSIC_GENERATIONS,
    ],
    Role.ARTIST: [
        ResourceKind.TRACK_UPLOADS,
        ResourceKind.ALBUM_PUBLISHES,
        ResourceKind.MUSIC_GENERATIONS,
    ],
    Role.DIRECTOR: [
        ResourceKind.PROJECTS,
        ResourceKind.ARTIST_DISCOVERY,
        ResourceKind.SHORTLISTS,
        ResourceKind.MUSIC_GENERATIONS,
    ],
    Role.DOCTOR: [
        ResourceKind.PROGRAMS,
        ResourceKind.THERAPY_TEMPLATES,
        ResourceKind.ARTICLES,
        ResourceKind.MUSIC_GENERATIONS,
    ],
    Role.ASTROLOGER: [
        ResourceKind.CLIENTS,
        ResourceKind.READINGS,
        ResourceKind.ASTRO_TEMPLATES,
        ResourceKind.RASI_RECOMMENDATIONS,
        ResourceKind.POSTS,
        ResourceKind.MUSIC_GENERATIONS,
    ],
}


def kind_available_to(role: Optional[Role], kind: ResourceKind) -> bool:
    if role is None:
        return False
    return kind in ROLE_RESOURCE_KINDS.get(role, [])


def _free(role: Role, limits: Dict[ResourceKind, UsageLimit], features: List[str]) -> Plan:
    return Plan(
        id=f"{role.value}_free",
        role=role,
        name="Free",
        price=Decimal("0"),
        duration_days=30,
        features=features,
        usage_limits=limits,
    )


def _pro(role: Role, price: str, limits: Dict[ResourceKind, UsageLimit], features: List[str]) -> Plan:
    return Plan(
        id=f"{role.value}_pro",
        role=role,
        name="Pro",
        price=Decimal(price),
        duration_days=30,
        features=features,
        usage_limits=limits,
        yearly_discount_percent=20,
    )


DEFAULT_PLANS: List[Plan] = [
    _free(Role.TEACHER, {
        ResourceKind.COURSES: UsageLimit(max_active=1),
        ResourceKind.LESSONS: UsageLimit(monthly=10),
        ResourceKind.STUDENTS: UsageLimit(max_active=5),
        ResourceKind.MUSIC_GENERATIONS: UsageLimit(daily=2, monthly=10),
    }, ["1 active course", "5 students", "10 lessons per month", "2 AI generations per day"]),
    _pro(Role.TEACHER, "499", {
        ResourceKind.COURSES: UsageLimit(max_active=20),
        ResourceKind.LESSONS: UsageLimit(),
        ResourceKind.STUDENTS: UsageLimit(max_active=100),
        ResourceKind.MUSIC_GENERATIONS: UsageLimit(daily=20, monthly=300),
    }, ["20 active courses", "100 students", "Unlimited lessons", "20 AI generations per day"]),

    _free(Role.ARTIST, {
        ResourceKind.TRACK_UPLOADS: UsageLimit(daily=2, monthly=10),
        ResourceKind.ALBUM_PUBLISHES: UsageLimit(monthly=1),
        ResourceKind.MUSIC_GENERATIONS: UsageLimit(daily=2, monthly=10),
    }, ["2 track uploads per day", "1 album per month"]),
    _pro(Role.ARTIST, "399", {
        ResourceKind.TRACK_UPLOADS: UsageLimit(daily=20, monthly=200),
        ResourceKind.ALBUM_PUBLISHES: UsageLimit(monthly=10),
        ResourceKind.MUSIC_GENERATIONS: UsageLimit(daily=20, monthly=300),
    }, ["20 track uploads per day", "10 albums per month", "Priority listing"]),

    _free(Role.DIRECTOR, {
        ResourceKind.PROJECTS: UsageLimit(max_active=1),
        ResourceKind.ARTIST_DISCOVERY: UsageLimit(daily=5, monthly=50),
        ResourceKind.SHORTLISTS: UsageLimit(monthly=2),
        ResourceKind.MUSIC_GENERATIONS: UsageLimit(daily=2, monthly=10),
    }, ["1 active project", "5 artist searches per day"]),
    _pro(Role.DIRECTOR, "999", {
        ResourceKind.PROJECTS: UsageLimit(max_active=10),
        ResourceKind.ARTIST_DISCOVERY: UsageLimit(daily=100, monthly=2000),
        ResourceKind.SHORTLISTS: UsageLimit(monthly=50),
        ResourceKind.MUSIC_GENERATIONS: UsageLimit(daily=20, monthly=300),
    }, ["10 active projects", "100 artist searches per day", "50 shortlists per month"]),

    _free(Role.DOCTOR, {
        ResourceKind.PROGRAMS: UsageLimit(monthly=1),
        ResourceKind.THERAPY_TEMPLATES: UsageLimit(monthly=2),
        ResourceKind.ARTICLES: UsageLimit(monthly=2),
        ResourceKind.MUSIC_GENERATIONS: UsageLimit(daily=2, monthly=10),
    }, ["1 therapy program per month", "2 articles per month"]),
    _pro(Role.DOCTOR, "799", {
        ResourceKind.PROGRAMS: UsageLimit(monthly=20),
        ResourceKind.THERAPY_TEMPLATES: UsageLimit(monthly=50),
        ResourceKind.ARTICLES: UsageLimit(monthly=30),
        ResourceKind.MUSIC_GENERATIONS: UsageLimit(daily=20, monthly=300),
    }, ["20 therapy programs per month", "30 articles per month"]),

    _free(Role.ASTROLOGER, {
        ResourceKind.CLIENTS: UsageLimit(max_active=10),
        ResourceKind.READINGS: UsageLimit(monthly=5),
        ResourceKind.ASTRO_TEMPLATES: UsageLimit(monthly=2),
        ResourceKind.RASI_RECOMMENDATIONS: UsageLimit(daily=3, monthly=30),
        ResourceKind.POSTS: UsageLimit(monthly=3),
        ResourceKind.MUSIC_GENERATIONS: UsageLimit(daily=2, monthly=10),
    }, ["10 active clients", "5 readings per month", "3 horoscope posts per month"]),
    _pro(Role.ASTROLOGER, "599", {
        ResourceKind.CLIENTS: UsageLimit(),
        ResourceKind.READINGS: UsageLimit(),
        ResourceKind.ASTRO_TEMPLATES: UsageLimit(monthly=50),
        ResourceKind.RASI_RECOMMENDATIONS: UsageLimit(daily=50, monthly=1000),
        ResourceKind.POSTS: UsageLimit(monthly=60),
        ResourceKind.MUSIC_GENERATIONS: UsageLimit(daily=20, monthly=300),
    }, ["Unlimited clients", "Unlimited readings", "60 horoscope posts per month"]),
]


class PlanCatalog:
    """Reads and maintains subscription plans"""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_plan(self, plan_id: str) -> Optional[Plan]:
        data = await self.store.get(PLANS_COLLECTION, plan_id)
        if data is None:
            return None
        data.setdefault("id", plan_id)
        return Plan.from_dict(data)

    async def list_plans(self, role: Optional[Role] = None, include_inactive: bool = False) -> List[Plan]:
        if role is not None:
            rows = await self.store.query(PLANS_COLLECTION, "role", role.value)
        else:
            rows = []
            for r in Role:
                rows.extend(await self.store.query(PLANS_COLLECTION, "role", r.value))

        plans = [Plan.from_dict(row) for row in rows if "id" in row]
        if not include_inactive:
            plans = [p for p in plans if p.active]
        return sorted(plans, key=lambda p: (p.role.value, p.price, p.id))

    async def default_plan_for(self, role: Role) -> Optional[Plan]:
        """Free tier applied when a subscription has no plan"""
        plan = await self.get_plan(f"{role.value}_free")
        if plan is not None:
            return plan
        for default in DEFAULT_PLANS:
            if default.role == role and default.is_free:
                return default
        return None

    async def upsert_plan(self, plan: Plan) -> Plan:
        await self.store.set(PLANS_COLLECTION, plan.id, plan.to_dict())
        logger.info(f"Plan {plan.id} saved (role={plan.role.value}, price={plan.price})")
        return plan

    async def seed_defaults(self) -> int:
        """Write built-in plans for any missing ids. Returns the number written."""
        written = 0
        for plan in DEFAULT_PLANS:
            if await self.store.create(PLANS_COLLECTION, plan.id, plan.to_dict()):
                written += 1
        if written:
            logger.info(f"Seeded {written} default subscription plans")
        return written
