# labwatch/auth/permissions.py
# Role and scope checks shared by the alert, breakdown and monitoring services

from dataclasses import dataclass
from typing import Iterable, Optional
import logging

from labwatch.core.exceptions import ForbiddenError
from labwatch.models.shared.enums import Role

logger = logging.getLogger(__name__)

POLICY_ROLES = frozenset({Role.POLICY_MAKER})
BREAKDOWN_ROLES = frozenset({Role.POLICY_MAKER, Role.LAB_MANAGER})


@dataclass(frozen=True)
class EquipmentScope:
    institute_id: Optional[int]
    department: Optional[str]
    lab_id: Optional[int] = None

    @classmethod
    def of(cls, equipment) -> "EquipmentScope":
        return cls(equipment.institute_id, equipment.department, equipment.lab_id)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of a workflow operation"""
    user_id: int
    role: Role
    institute_id: Optional[int] = None
    department: Optional[str] = None
    lab_id: Optional[int] = None

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(
            user_id=user.id,
            role=Role(user.role),
            institute_id=user.institute_id,
            department=user.department,
            lab_id=user.lab_id,
        )

    @property
    def is_policy_level(self) -> bool:
        return self.role in POLICY_ROLES


def scope_covers(actor: Actor, scope: EquipmentScope) -> bool:
    """
    Whether ``actor`` may see equipment in ``scope``.

    POLICY_MAKER: everything.
    LAB_MANAGER: same institute and department.
    TRAINER: same institute, department and lab.
    """
    if actor.role is Role.POLICY_MAKER:
        return True

    same_department = (
        actor.institute_id is not None
        and actor.institute_id == scope.institute_id
        and actor.department == scope.department
    )
    if actor.role is Role.LAB_MANAGER:
        return same_department
    if actor.role is Role.TRAINER:
        return same_department and actor.lab_id is not None and actor.lab_id == scope.lab_id
    return False


def require_scope(actor: Actor, scope: EquipmentScope, message: str = None):
    if not scope_covers(actor, scope):
        message = message or "Equipment is outside your institute/department scope"
        logger.warning(f"Scope check failed for user {actor.user_id} ({actor.role.value}): {message}")
        raise ForbiddenError(message)


def require_role(actor: Actor, allowed: Iterable[Role], action: str):
    if actor.role not in allowed:
        logger.warning(f"Role check failed for user {actor.user_id}: {actor.role.value} cannot {action}")
        raise ForbiddenError(f"Role {actor.role.value} is not allowed to {action}")


def scope_conditions(actor: Actor, equipment_model) -> list:
    """SQL filter equivalent of scope_covers, for list queries joined to equipment"""
    if actor.role is Role.POLICY_MAKER:
        return []
    if actor.institute_id is None:
        return [equipment_model.id.is_(None)]

    conditions = [
        equipment_model.institute_id == actor.institute_id,
        equipment_model.department == actor.department,
    ]
    if actor.role is Role.TRAINER:
        conditions.append(equipment_model.lab_id == actor.lab_id)
    elif actor.role is not Role.LAB_MANAGER:
        conditions.append(equipment_model.id.is_(None))
    return conditions
