"""Propagate the acting principal through the call stack using contextvars."""

from contextvars import ContextVar
from contextlib import contextmanager
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from core.authority import Actor

_current_actor: ContextVar["Actor | None"] = ContextVar("current_actor", default=None)


def get_current_actor() -> "Actor":
    """
    Get the acting principal from context.

    Raises RuntimeError if no actor is set.
    This is fail-fast behavior - if you're in a code path that
    requires an actor and it's not set, that's a bug.
    """
    actor = _current_actor.get()
    if actor is None:
        raise RuntimeError(
            "No actor context set. This usually means you're calling "
            "actor-scoped code outside of an authenticated request."
        )
    return actor


def get_current_user_id() -> UUID:
    """User id of the acting principal."""
    return get_current_actor().user_id


def set_current_actor(actor: "Actor") -> None:
    """
    Set the acting principal in context.

    Called by the API middleware after the identity collaborator
    resolved the caller.
    """
    _current_actor.set(actor)


def clear_current_actor() -> None:
    """
    Clear actor context.

    Must be called in finally block to prevent context leakage.
    """
    _current_actor.set(None)


@contextmanager
def actor_context(actor: "Actor"):
    """
    Context manager for temporarily setting the acting principal.

    Useful for:
    - Tests
    - Background jobs acting on behalf of a user
    - Payment-capture callbacks acting as the system admin

    Example:
        with actor_context(Actor(user_id=uid, role=Role.VENDOR, vendor_id=vid)):
            coordinator.respond_to_assignment(ticket_id, accept=True)
    """
    previous = _current_actor.get()
    set_current_actor(actor)
    try:
        yield actor
    finally:
        if previous is None:
            clear_current_actor()
        else:
            set_current_actor(previous)
