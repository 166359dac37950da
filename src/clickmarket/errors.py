"""Custom exceptions for clickmarket."""


class ClickMarketError(Exception):
    """Base exception for all clickmarket errors."""

    pass


class ValidationError(ClickMarketError):
    """Raised when input is malformed or a required field is missing."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidStateError(ClickMarketError):
    """Raised when an operation is not allowed from the entity's current status."""

    def __init__(self, entity: str, entity_id: str, status: str, operation: str):
        self.entity = entity
        self.entity_id = entity_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {entity} {entity_id} while status is '{status}'"
        )


class ImmutableError(ClickMarketError):
    """Raised when a field frozen by a lifecycle point is modified."""

    def __init__(self, entity: str, entity_id: str, field: str, status: str):
        self.entity = entity
        self.entity_id = entity_id
        self.field = field
        self.status = status
        super().__init__(
            f"Field '{field}' of {entity} {entity_id} is frozen (status '{status}')"
        )


class NotFoundError(ClickMarketError):
    """Raised when an entity id does not resolve."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found: {entity_id}")


class ConflictError(ClickMarketError):
    """Raised when a unique field value is already taken."""

    def __init__(self, entity: str, field: str, value: str):
        self.entity = entity
        self.field = field
        self.value = value
        super().__init__(f"Duplicate {field} for {entity}: {value}")


class ResourceExhaustedError(ClickMarketError):
    """Raised when identifier allocation gives up after repeated collisions."""

    def __init__(self, resource: str, attempts: int):
        self.resource = resource
        self.attempts = attempts
        super().__init__(f"Could not allocate a unique {resource} after {attempts} attempts")


class RoleError(ClickMarketError):
    """Raised when a user does not hold the role an operation requires."""

    def __init__(self, user_id: str, role: str, required: tuple[str, ...]):
        self.user_id = user_id
        self.role = role
        self.required = required
        super().__init__(
            f"User {user_id} has role '{role}', expected one of: {', '.join(required)}"
        )


class InvalidSchemaVersionError(ClickMarketError):
    """Raised when a collection file has an unsupported schema version."""

    def __init__(self, found: int, supported: int):
        self.found = found
        self.supported = supported
        super().__init__(
            f"Unsupported schema version {found}. This tool supports version {supported}."
        )
