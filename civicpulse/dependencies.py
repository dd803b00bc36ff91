"""
CivicPulse - FastAPI Dependencies

Authentication is handled upstream; the gateway forwards the acting user
in the X-Actor-Id / X-Actor-Type headers.
"""

from typing import Optional

from fastapi import Header

from civicpulse.models.billing_enums import ActorType
from civicpulse.services.mandate_state_machine import Actor
from civicpulse.utils.error_handling import ValidationException


async def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_type: Optional[str] = Header(None),
) -> Actor:
    """Actor recorded on activity rows; defaults to the system actor."""
    if not x_actor_type:
        return Actor(id=x_actor_id, type=ActorType.SYSTEM)
    try:
        actor_type = ActorType(x_actor_type.lower())
    except ValueError:
        raise ValidationException(
            f"Unknown actor type '{x_actor_type}'",
            field="X-Actor-Type",
        )
    return Actor(id=x_actor_id, type=actor_type)
