"""
Role Unlock and Course Enrollment

Side effects of a verified course purchase:
- the buyer is enrolled in the course
- if the course unlocks a professional role, the role is granted

Both are create-if-absent, so replaying a fulfilment never duplicates
records. Unlocks are monotonic: nothing here removes a role.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from entitlements.document_store import DocumentStore
from entitlements.models import Role, RoleUnlockRecord, utcnow
from utils.logger import logger

UNLOCKS_COLLECTION = "roleUnlocks"
ENROLLMENTS_COLLECTION = "enrollments"
USERS_COLLECTION = "users"

# Canonical dashboard for each role, used as the post-purchase redirect
DASHBOARD_REDIRECTS: Dict[Role, str] = {
    Role.TEACHER: "music_teacher",
    Role.ARTIST: "artist",
    Role.DIRECTOR: "music_director",
    Role.DOCTOR: "music_therapy",
    Role.ASTROLOGER: "astrologer",
}


@dataclass
class UnlockResult:
    role: Role
    already_unlocked: bool
    redirect_role: str


class RoleUnlockService:
    """Grants roles and enrollments for verified course purchases"""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def unlock_role(
        self,
        user_id: str,
        role: Role,
        source_course_id: str,
        now: Optional[datetime] = None,
    ) -> UnlockResult:
        record = RoleUnlockRecord(
            user_id=user_id,
            unlocked_role=role,
            source_course_id=source_course_id,
            unlocked_at=now or utcnow(),
        )
        created = await self.store.create(
            UNLOCKS_COLLECTION, f"{user_id}:{role.value}", record.to_dict()
        )
        # Array union is idempotent, so it also repairs a crash after the record write
        await self.store.array_union(USERS_COLLECTION, user_id, "roles", [role.value])

        if created:
            logger.info(f"Unlocked role {role.value} for {user_id} via course {source_course_id}")
        else:
            logger.info(f"Role {role.value} already unlocked for {user_id}")

        return UnlockResult(
            role=role,
            already_unlocked=not created,
            redirect_role=DASHBOARD_REDIRECTS[role],
        )

    async def grant_enrollment(
        self,
        user_id: str,
        course_id: str,
        order_id: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Enroll the user in a course. Returns False if already enrolled."""
        created = await self.store.create(ENROLLMENTS_COLLECTION, f"{user_id}:{course_id}", {
            "userId": user_id,
            "courseId": course_id,
            "orderId": order_id,
            "enrolledAt": now or utcnow(),
        })
        if created:
            logger.info(f"Enrolled {user_id} in course {course_id} (order {order_id})")
        return created

    async def assign_role(self, user_id: str, role: Role) -> None:
        """Make role the user's active role after a subscription purchase."""
        await self.store.set(USERS_COLLECTION, user_id, {"role": role.value}, merge=True)
        await self.store.array_union(USERS_COLLECTION, user_id, "roles", [role.value])
