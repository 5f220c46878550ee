"""Chat session status machine.

open -> assigned -> resolved -> reopened -> assigned | resolved, and any
non-closed status -> closed. Nothing else is reachable.
"""

from app.core.exceptions import InvalidTransitionError
from app.models.chat_session import ChatSession, ChatStatus, UserRole
from app.repositories.chat_repo import ChatRepository

ALLOWED_TRANSITIONS: dict[ChatStatus, frozenset[ChatStatus]] = {
    ChatStatus.OPEN: frozenset({ChatStatus.ASSIGNED, ChatStatus.CLOSED}),
    ChatStatus.ASSIGNED: frozenset({ChatStatus.RESOLVED, ChatStatus.CLOSED}),
    ChatStatus.RESOLVED: frozenset({ChatStatus.REOPENED, ChatStatus.CLOSED}),
    ChatStatus.REOPENED: frozenset(
        {ChatStatus.ASSIGNED, ChatStatus.RESOLVED, ChatStatus.CLOSED}
    ),
    ChatStatus.CLOSED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Check whether ``current -> target`` is an edge of the status machine."""
    return ChatStatus(target) in ALLOWED_TRANSITIONS[ChatStatus(current)]


def ensure_transition(current: str, target: str) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` exists."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current=current, requested=target)


def apply_transition(
    repo: ChatRepository,
    chat: ChatSession,
    target: ChatStatus,
    actor_id: str,
    actor_role: str,
    action: str = "status",
) -> ChatStatus:
    """Validate and apply a transition in place, keeping ownership consistent.

    ``assigned_admin_id`` is set only while the status is assigned or
    reopened. Returns the previous status. The caller commits.
    """
    previous = ChatStatus(chat.status)
    ensure_transition(previous, target)

    match target:
        case ChatStatus.ASSIGNED:
            if chat.assigned_admin_id is None:
                chat.assigned_admin_id = actor_id
                repo.set_admin_participant(chat, actor_id, actor_role)
            chat.last_admin_id = chat.assigned_admin_id
        case ChatStatus.REOPENED:
            # Resolved is only reachable from owned states, so last_admin_id is set.
            owner = chat.last_admin_id or actor_id
            chat.assigned_admin_id = owner
            if chat.admin_participant is None:
                repo.set_admin_participant(chat, owner, UserRole.ADMIN)
        case ChatStatus.RESOLVED | ChatStatus.CLOSED:
            if chat.assigned_admin_id is not None:
                chat.last_admin_id = chat.assigned_admin_id
            chat.assigned_admin_id = None

    chat.status = target
    repo.add_audit_entry(
        chat_id=chat.id,
        actor_id=actor_id,
        action=action,
        from_status=previous,
        to_status=target,
    )
    return previous
