"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc, parse_iso, day_bounds_utc, format_slot
from utils.user_context import (
    get_current_actor,
    get_current_user_id,
    set_current_actor,
    clear_current_actor,
    actor_context,
)
