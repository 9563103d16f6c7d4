"""Doctor auto-assignment for athletes on their first WHOOP sync.

The doctor is ``DEFAULT_DOCTOR_ID`` when that is a valid UUID, otherwise the
earliest profile with role ``doctor``.  The new relationship also gets the
default alert thresholds (best effort).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence
from uuid import UUID

from primeportal.dependencies import UserRole
from primeportal.errors import PortalError
from primeportal.wearables.sync.alerts import AlertThreshold, default_thresholds

logger = logging.getLogger("primeportal.wearables.sync.assignment")


class AssignmentStore(Protocol):
    async def get_user_role(self, user_id: UUID) -> str | None: ...

    async def first_doctor_id(self) -> UUID | None: ...

    async def relationship_exists(self, doctor_id: UUID, patient_id: UUID) -> bool: ...

    async def create_relationship(self, doctor_id: UUID, patient_id: UUID) -> None: ...

    async def create_thresholds(self, thresholds: Sequence[AlertThreshold]) -> None: ...


@dataclass
class AssignmentResult:
    """What ``auto_assign_doctor`` did.

    ``skipped`` names the reason when no relationship was created.
    """

    relationship_created: bool = False
    thresholds_created: bool = False
    doctor_id: UUID | None = None
    skipped: str | None = None


def parse_doctor_id(value: str | None) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(value.strip())
    except ValueError:
        logger.error("DEFAULT_DOCTOR_ID is not a valid UUID; using the first doctor instead")
        return None


async def auto_assign_doctor(
    store: AssignmentStore,
    patient_id: UUID,
    default_doctor_id: UUID | None = None,
) -> AssignmentResult:
    """Link ``patient_id`` to a doctor unless one is already linked.

    Raises:
        PortalError: When the role lookup or the relationship insert fails.
    """
    role = UserRole.parse(await store.get_user_role(patient_id))
    if role is not UserRole.ATHLETE:
        return AssignmentResult(skipped="not an athlete")

    doctor_id = default_doctor_id or await store.first_doctor_id()
    if doctor_id is None:
        logger.warning("No doctor available to assign to athlete %s", patient_id)
        return AssignmentResult(skipped="no doctor available")

    if await store.relationship_exists(doctor_id, patient_id):
        return AssignmentResult(doctor_id=doctor_id, skipped="already assigned")

    await store.create_relationship(doctor_id, patient_id)
    result = AssignmentResult(relationship_created=True, doctor_id=doctor_id)
    logger.info("Assigned athlete %s to doctor %s", patient_id, doctor_id)

    try:
        await store.create_thresholds(default_thresholds(doctor_id, patient_id))
        result.thresholds_created = True
    except PortalError as exc:
        logger.warning(
            "Default thresholds not created for athlete %s: %s", patient_id, exc.message
        )
    return result
