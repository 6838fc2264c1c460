"""Shared FastAPI dependencies."""

from uuid import UUID

from fastapi import Header, Request

from .slots.controller import SlotLifecycleController


class InvalidActor(Exception):
    """Raised when the X-Actor-Id header is not a UUID. Handled by exception handler in main.py."""

    pass


def get_controller(request: Request) -> SlotLifecycleController:
    """Get the slot lifecycle controller from app state."""
    return request.app.state.controller


def get_actor_id(x_actor_id: str | None = Header(None)) -> UUID | None:
    """The acting user, as forwarded by the upstream gateway."""
    if not x_actor_id:
        return None
    try:
        return UUID(x_actor_id)
    except ValueError:
        raise InvalidActor(x_actor_id)
