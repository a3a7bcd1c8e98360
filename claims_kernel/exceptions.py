"""
Typed Exception Hierarchy for the Claims Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The HTTP layer that sits above this package maps each failure to a
transport status.  That mapping must be mechanical:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (entity type, id, attempted action)

Example - WRONG way to handle errors:
    try:
        claims.update_status(app_id, "approved", actor)
    except Exception as e:
        if "not permitted" in str(e):  # FRAGILE - message might change
            return 409

Example - RIGHT way (what this module enables):
    try:
        claims.update_status(app_id, "approved", actor)
    except TransitionNotPermittedError as e:
        return api_response(409, code=e.code, target=e.to_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ClaimsKernelError:

    ClaimsKernelError (base)
    |
    +-- NotFoundError
    |
    +-- ValidationError
    |
    +-- ConflictError
    |   +-- StaleStateError
    |   +-- DuplicateRecordError
    |
    +-- TransitionNotPermittedError
    |
    +-- ImmutableRecordError
    |
    +-- UnsupportedOperationError
    |   +-- UnsupportedProviderError
    |
    +-- NotConnectedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                        | When Raised
----------------------------|---------------------------------------------
NOT_FOUND                   | Referenced entity is absent
VALIDATION_ERROR            | Malformed or out-of-range input
CONFLICT                    | Generic write conflict
STALE_STATE                 | Optimistic status check lost a race
DUPLICATE_RECORD            | Natural key (reference number, email) taken
TRANSITION_NOT_PERMITTED    | Workflow or permission check refused the action
IMMUTABLE_RECORD            | Audit entry / review / resolved comment edit
UNSUPPORTED_OPERATION       | Adapter lacks the requested capability
UNSUPPORTED_PROVIDER        | Unknown persistence discriminator at startup
NOT_CONNECTED               | Gateway used outside its connection lifecycle
"""

from typing import Any


class ClaimsKernelError(Exception):
    """Base exception for all claims kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "CLAIMS_KERNEL_ERROR"


class NotFoundError(ClaimsKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} {entity_id} not found")


class ValidationError(ClaimsKernelError):
    """Input is malformed or out of range."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(message)


class ConflictError(ClaimsKernelError):
    """Base for write conflicts."""

    code: str = "CONFLICT"


class StaleStateError(ConflictError):
    """The entity changed between the caller's read and its write."""

    code: str = "STALE_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        expected: Any = None,
        actual: Any = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.expected = expected
        self.actual = actual
        detail = ""
        if expected is not None:
            detail = f" (expected {expected}, found {actual})"
        super().__init__(
            f"Stale state on {entity_type} {entity_id}: "
            f"entity was modified by another writer{detail}"
        )


class DuplicateRecordError(ConflictError):
    """A record with the same identity or natural key already exists."""

    code: str = "DUPLICATE_RECORD"

    def __init__(self, entity_type: str, field: str, value: Any):
        self.entity_type = entity_type
        self.field = field
        self.value = str(value)
        super().__init__(f"{entity_type} with {field}={value} already exists")


class TransitionNotPermittedError(ClaimsKernelError):
    """A workflow refused the requested action on a record."""

    code: str = "TRANSITION_NOT_PERMITTED"

    def __init__(
        self,
        entity_id: Any,
        from_status: str,
        to_status: str,
        reason: str,
        action: str = "update_status",
        entity_type: str = "application",
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.from_status = from_status
        self.to_status = to_status
        self.action = action
        self.reason = reason
        super().__init__(
            f"Cannot {action} {entity_type} {entity_id} "
            f"({from_status} -> {to_status}): {reason}"
        )


class ImmutableRecordError(ClaimsKernelError):
    """Attempted modification of an append-only or write-once record."""

    code: str = "IMMUTABLE_RECORD"

    def __init__(self, entity_type: str, entity_id: Any, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id) if entity_id is not None else None
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


class UnsupportedOperationError(ClaimsKernelError):
    """The active persistence adapter does not offer this capability."""

    code: str = "UNSUPPORTED_OPERATION"

    def __init__(self, provider: str, operation: str):
        self.provider = provider
        self.operation = operation
        super().__init__(
            f"Operation '{operation}' is not supported by provider '{provider}'"
        )


class UnsupportedProviderError(UnsupportedOperationError):
    """The configured persistence discriminator names no known adapter."""

    code: str = "UNSUPPORTED_PROVIDER"

    def __init__(self, provider: str, supported: tuple[str, ...] = ()):
        self.supported = supported
        super().__init__(provider, "create_gateway")
        self.args = (
            f"Unsupported persistence provider '{provider}'"
            + (f"; expected one of {', '.join(supported)}" if supported else ""),
        )


class NotConnectedError(ClaimsKernelError):
    """Gateway was invoked before connect() or after disconnect()."""

    code: str = "NOT_CONNECTED"

    def __init__(self, provider: str, operation: str):
        self.provider = provider
        self.operation = operation
        super().__init__(
            f"Persistence gateway '{provider}' is not connected "
            f"(attempted {operation})"
        )
