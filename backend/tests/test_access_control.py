# tests/test_access_control.py — Decision table for task permissions
import pytest

from access_control import Action, Actor, authorize, can_view, require
from errors import ForbiddenError, NotFoundError
from models import MemberRole, TaskStatus
from snapshots import TaskSnapshot

CREATOR = "u-creator"
ASSIGNEE = "u-assignee"
FOLLOWER = "u-follower"
STRANGER = "u-stranger"

ALL_ACTIONS = [a for a in Action if a != Action.CREATE]
MUTATING = [Action.EDIT, Action.CHANGE_STATUS, Action.DELETE]


def make_task(**overrides) -> TaskSnapshot:
    values = dict(
        id="t-1",
        workspace_id="w-1",
        service_id="s-1",
        name="Rotate keys",
        status=TaskStatus.TODO,
        creator_id=CREATOR,
        assignee_id=ASSIGNEE,
        follower_ids=frozenset({CREATOR, FOLLOWER}),
    )
    values.update(overrides)
    return TaskSnapshot(**values)


def admin(user_id=STRANGER):
    return Actor(user_id, MemberRole.ADMIN)


def member(user_id=STRANGER):
    return Actor(user_id, MemberRole.MEMBER)


def visitor(user_id=STRANGER):
    return Actor(user_id, MemberRole.VISITOR)


# ============================================================
# ADMIN
# ============================================================

@pytest.mark.parametrize("action", list(Action))
@pytest.mark.parametrize("confidential", [False, True])
def test_admin_may_do_everything(action, confidential):
    task = None if action == Action.CREATE else make_task(is_confidential=confidential)
    assert authorize(admin(), task, action).allowed


def test_admin_sees_archived_tasks():
    assert can_view(admin(), make_task(status=TaskStatus.ARCHIVED))


# ============================================================
# MEMBER
# ============================================================

@pytest.mark.parametrize("action", [Action.CREATE, Action.VIEW, Action.COMMENT, Action.FOLLOW, Action.MANAGE_ATTACHMENT])
def test_member_participant_actions_on_open_task(action):
    task = None if action == Action.CREATE else make_task()
    assert authorize(member(), task, action).allowed


@pytest.mark.parametrize("action", MUTATING)
@pytest.mark.parametrize("user_id,allowed", [
    (CREATOR, True),
    (ASSIGNEE, True),
    (FOLLOWER, False),
    (STRANGER, False),
])
def test_member_ownership_rule(action, user_id, allowed):
    decision = authorize(member(user_id), make_task(), action)
    assert decision.allowed is allowed
    if not allowed:
        assert decision.conceal is False


@pytest.mark.parametrize("user_id", [CREATOR, ASSIGNEE, FOLLOWER])
def test_involved_member_sees_confidential_task(user_id):
    assert can_view(member(user_id), make_task(is_confidential=True))


@pytest.mark.parametrize("action", ALL_ACTIONS)
def test_uninvolved_member_refused_everything_on_confidential_task(action):
    decision = authorize(member(), make_task(is_confidential=True), action)
    assert not decision.allowed
    assert decision.conceal is True


def test_confidentiality_checked_before_ownership():
    # Not creator or assignee, but following: may view, still may not edit
    task = make_task(is_confidential=True)
    assert can_view(member(FOLLOWER), task)
    decision = authorize(member(FOLLOWER), task, Action.EDIT)
    assert not decision.allowed
    assert decision.conceal is False


def test_member_without_assignee_task():
    task = make_task(assignee_id=None)
    assert not authorize(member(ASSIGNEE), task, Action.EDIT).allowed
    assert authorize(member(CREATOR), task, Action.EDIT).allowed


# ============================================================
# VISITOR
# ============================================================

def test_visitor_views_open_task():
    assert can_view(visitor(), make_task())


@pytest.mark.parametrize("action", [a for a in Action if a != Action.VIEW])
def test_visitor_read_only(action):
    task = None if action == Action.CREATE else make_task()
    assert not authorize(visitor(), task, action).allowed


def test_visitor_never_sees_confidential_task():
    task = make_task(is_confidential=True, follower_ids=frozenset({CREATOR, STRANGER}))
    decision = authorize(visitor(), task, Action.VIEW)
    assert not decision.allowed
    assert decision.conceal is True


def test_visitor_never_sees_archived_task():
    assert not can_view(visitor(), make_task(status=TaskStatus.ARCHIVED))


# ============================================================
# require()
# ============================================================

def test_require_conceals_confidential_denial_as_not_found():
    with pytest.raises(NotFoundError):
        require(member(), make_task(is_confidential=True), Action.VIEW)


def test_require_raises_forbidden_for_ownership_denial():
    with pytest.raises(ForbiddenError) as exc:
        require(member(), make_task(), Action.DELETE)
    assert "creator or assignee" in exc.value.message


def test_task_required_for_task_actions():
    with pytest.raises(ValueError):
        authorize(member(), None, Action.VIEW)
