"""Transition-table guard shared by every lifecycle."""
import logging
from marketplace.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


def can_transition(table: dict, current, requested) -> bool:
    return requested in table.get(current, set())


def ensure_transition(entity: str, table: dict, current, requested) -> None:
    """Raise InvalidTransitionError unless `current -> requested` is in `table`."""
    if not can_transition(table, current, requested):
        logger.info(
            f"Rejected {entity} transition {getattr(current, 'value', current)} -> "
            f"{getattr(requested, 'value', requested)}"
        )
        raise InvalidTransitionError(entity, current, requested)
