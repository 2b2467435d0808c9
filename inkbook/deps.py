# inkbook/deps.py

from fastapi import BackgroundTasks, HTTPException

from .lifecycle import Actor
from .outbound import Outbox
from .schemas import ActorRole


def require_role(user: dict, role: str):
    if user["role"] != role:
        raise HTTPException(status_code=403, detail="Forbidden")


def actor_from_user(user: dict) -> Actor:
    return Actor(role=ActorRole(user["role"]), id=user["id"])


def get_outbox(background_tasks: BackgroundTasks) -> Outbox:
    """Per-request outbox, drained after the response has been sent."""
    outbox = Outbox()
    background_tasks.add_task(outbox.drain)
    return outbox
