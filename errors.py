class AnalyticsError(Exception):
    """Base class for failures raised by the analytics engine."""


class ValidationError(AnalyticsError, ValueError):
    """Malformed caller input: dates, enums, numeric options."""


class NotFoundError(AnalyticsError, LookupError):
    """Unknown user, budget, goal or report id."""


class AuthorizationError(NotFoundError):
    """The entity exists but belongs to another user.

    Subclasses NotFoundError and carries the same message so that callers
    mapping errors to responses cannot reveal that the entity exists.
    """

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


def not_found(entity: str, entity_id: object) -> NotFoundError:
    return NotFoundError(f"{entity} {entity_id} not found")
