# access_control.py — Single decision table for task permissions
"""
Pure decision function: (actor, task snapshot, action) -> Decision.

Evaluation order is role first, then task attributes. For non-admins the
confidentiality gate runs before the ownership rule, so a member who is not
involved in a confidential task is refused every action on it, and the refusal
is concealed as non-existence.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from errors import ForbiddenError, NotFoundError
from models import MemberRole, TaskStatus
from snapshots import TaskSnapshot


class Action(str, Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    CHANGE_STATUS = "changeStatus"
    DELETE = "delete"
    COMMENT = "comment"
    FOLLOW = "follow"
    MANAGE_ATTACHMENT = "manageAttachment"


# Actions that only the creator or assignee may perform as a MEMBER
OWNER_ACTIONS = frozenset({Action.EDIT, Action.CHANGE_STATUS, Action.DELETE})

# Actions any MEMBER who can see the task may perform
PARTICIPANT_ACTIONS = frozenset({
    Action.VIEW, Action.COMMENT, Action.FOLLOW, Action.MANAGE_ATTACHMENT,
})


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: MemberRole


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None
    # Denial must look like the task does not exist
    conceal: bool = False

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str, conceal: bool = False) -> "Decision":
        return cls(allowed=False, reason=reason, conceal=conceal)


ALLOW = Decision.allow()


def authorize(actor: Actor, task: Optional[TaskSnapshot], action: Action) -> Decision:
    """Decide whether ``actor`` may perform ``action`` on ``task``.

    ``task`` may be None only for ``Action.CREATE``.
    """
    role = MemberRole(actor.role)

    if role == MemberRole.ADMIN:
        return ALLOW

    if action == Action.CREATE:
        if role == MemberRole.MEMBER:
            return ALLOW
        return Decision.deny("visitors cannot create tasks")

    if task is None:
        raise ValueError(f"action {action.value!r} requires a task")

    if task.is_confidential and not task.involves(actor.user_id):
        return Decision.deny("task is confidential", conceal=True)

    if role == MemberRole.VISITOR:
        if action != Action.VIEW:
            return Decision.deny("visitors have read-only access")
        if task.is_confidential:
            return Decision.deny("task is confidential", conceal=True)
        if task.status == TaskStatus.ARCHIVED:
            return Decision.deny("archived tasks are hidden from visitors", conceal=True)
        return ALLOW

    if action in PARTICIPANT_ACTIONS:
        return ALLOW
    if action in OWNER_ACTIONS:
        if task.owned_by(actor.user_id):
            return ALLOW
        return Decision.deny("only the creator or assignee may modify this task")

    return Decision.deny(f"unknown action {action!r}")


def can_view(actor: Actor, task: TaskSnapshot) -> bool:
    return authorize(actor, task, Action.VIEW).allowed


def raise_for(decision: Decision) -> None:
    """Raise the engine error matching a denial; no-op when allowed."""
    if decision.allowed:
        return
    if decision.conceal:
        raise NotFoundError()
    raise ForbiddenError(decision.reason)


def require(actor: Actor, task: Optional[TaskSnapshot], action: Action) -> None:
    raise_for(authorize(actor, task, action))
