"""Domain exceptions for the marketplace exchange engine.

Four error kinds reach callers: NotFoundError, ConflictError,
ValidationError and AuthorizationError. They are framework-agnostic and
are translated to HTTP responses by the API layer's middleware. None of
them is retried internally.
"""


class ExchangeError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "EXCHANGE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Lookup Errors ---


class NotFoundError(ExchangeError):
    """Raised when a referenced entity does not exist (or is no longer open)."""

    def __init__(self, entity: str, entity_id: object, detail: str | None = None) -> None:
        message = f"{entity.capitalize()} not found: {entity_id}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message=message, code=f"{entity.upper()}_NOT_FOUND")
        self.entity = entity
        self.entity_id = str(entity_id)


# --- Invariant Errors ---


class ConflictError(ExchangeError):
    """Raised when an operation would violate an invariant.

    Examples: wrong source state, duplicate offer/review/report, listing no
    longer available.
    """

    def __init__(self, message: str, code: str = "CONFLICT") -> None:
        super().__init__(message=message, code=code)


class InvalidStateTransitionError(ConflictError):
    """Raised when a state machine rejects a transition.

    Example: completed -> disputed.
    """

    def __init__(self, entity: str, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid {entity} transition: {attempted} not allowed from {current_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.entity = entity
        self.current_state = current_state
        self.attempted = attempted


class DuplicateError(ConflictError):
    """Raised when a per-actor uniqueness rule is violated."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="DUPLICATE")


# --- Input Errors ---


class ValidationError(ExchangeError):
    """Raised for malformed input, e.g. non-positive or mismatched amounts."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.field = field


# --- Actor Errors ---


class AuthorizationError(ExchangeError):
    """Raised when the actor is not the party allowed to perform an operation."""

    def __init__(self, actor_id: object, action: str) -> None:
        super().__init__(
            message=f"Actor {actor_id} is not allowed to {action}",
            code="NOT_AUTHORIZED",
        )
        self.actor_id = str(actor_id)
        self.action = action
