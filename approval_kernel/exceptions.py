"""
Typed exception hierarchy for the approval kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (route handlers, the timeout scheduler, operator tooling) must react
to engine errors precisely.  Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

Example - RIGHT way:
    try:
        engine.decide(request_id, actor, Decision.APPROVE)
    except NotPendingError as e:
        return api_response(code=e.code, request_id=e.request_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- WorkflowValidationError          (rejected before any mutation)
    |   +-- InvalidEntityTypeError
    |   +-- InvalidTopologyError
    |   +-- MissingFieldError
    |   +-- InvalidStepOrderError
    |   +-- DuplicateStepOrderError
    |   +-- InvalidApproverSpecError
    |   +-- InvalidDefinitionError
    |   +-- InvalidDecisionError
    |
    +-- DefinitionError
    |   +-- DefinitionNotFoundError
    |   +-- EntityTypeMismatchError
    |   +-- DefinitionDeprecatedError
    |   +-- DefinitionInUseError
    |
    +-- AuthorizationError               (no side effects)
    |   +-- UnauthorizedApproverError
    |
    +-- StateConflictError               (expected, recoverable)
    |   +-- DuplicateActiveInstanceError
    |   +-- NotPendingError
    |   +-- AlreadyTerminalError
    |   +-- NotBlockedError
    |   +-- RequestNotFoundError
    |   +-- InstanceNotFoundError
    |
    +-- ResolutionError                  (operator intervention)
    |   +-- UnresolvableApproverError
    |   +-- NoApproverForStepError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentTransitionError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
    |   +-- HistoryChainBrokenError
    |
    +-- StorageError
        +-- StoreUnavailableError

===============================================================================
HANDLING PATTERNS
===============================================================================

1. STATE CONFLICTS ARE NOT BUGS.  ``NotPendingError``, ``AlreadyTerminalError``
   and ``DuplicateActiveInstanceError`` are surfaced to the user and logged at
   INFO, never as failures.

2. RESOLUTION ERRORS LEAVE THE INSTANCE PENDING.  ``NoApproverForStepError``
   is raised after the approval that completed the previous step has been
   committed; the instance waits for ``engine.resume()`` or ``engine.cancel()``.

3. CONCURRENCY ERRORS ARE RETRYABLE.  The engine retries internally; a
   ``ConcurrentTransitionError`` escaping the engine means the retry limit
   was exhausted.

4. STORAGE ERRORS ARE ATOMIC.  No partial writes are visible after a
   ``StoreUnavailableError``.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Validation errors


class WorkflowValidationError(ApprovalKernelError):
    """Base exception for input validation errors."""

    code: str = "WORKFLOW_VALIDATION_ERROR"


class InvalidEntityTypeError(WorkflowValidationError):
    """Entity type is not one of the supported entity types."""

    code: str = "INVALID_ENTITY_TYPE"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"Invalid entity type: {entity_type!r}")


class InvalidTopologyError(WorkflowValidationError):
    """Topology is not one of sequential, parallel, any_one."""

    code: str = "INVALID_TOPOLOGY"

    def __init__(self, topology: str):
        self.topology = topology
        super().__init__(f"Invalid workflow topology: {topology!r}")


class MissingFieldError(WorkflowValidationError):
    """A required field was empty or missing."""

    code: str = "MISSING_FIELD"

    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(f"Required field is missing: {field_name}")


class InvalidStepOrderError(WorkflowValidationError):
    """Step order is non-positive or would leave a gap."""

    code: str = "INVALID_STEP_ORDER"

    def __init__(self, step_order: int, reason: str):
        self.step_order = step_order
        self.reason = reason
        super().__init__(f"Invalid step order {step_order}: {reason}")


class DuplicateStepOrderError(WorkflowValidationError):
    """Sequential definition already has a step at this order."""

    code: str = "DUPLICATE_STEP_ORDER"

    def __init__(self, definition_id: str, step_order: int):
        self.definition_id = definition_id
        self.step_order = step_order
        super().__init__(
            f"Sequential definition {definition_id} already has step {step_order}"
        )


class InvalidApproverSpecError(WorkflowValidationError):
    """Approver specifier or step timing configuration is malformed."""

    code: str = "INVALID_APPROVER_SPEC"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid step configuration: {reason}")


class InvalidDefinitionError(WorkflowValidationError):
    """Definition cannot be started (no steps, or non-contiguous orders)."""

    code: str = "INVALID_DEFINITION"

    def __init__(self, definition_id: str, reason: str):
        self.definition_id = definition_id
        self.reason = reason
        super().__init__(f"Definition {definition_id} is not startable: {reason}")


class InvalidDecisionError(WorkflowValidationError):
    """Decision is neither approve nor reject."""

    code: str = "INVALID_DECISION"

    def __init__(self, decision: str):
        self.decision = decision
        super().__init__(f"Invalid decision: {decision!r}")


# Definition errors


class DefinitionError(ApprovalKernelError):
    """Base exception for workflow definition errors."""

    code: str = "DEFINITION_ERROR"


class DefinitionNotFoundError(DefinitionError):
    """Workflow definition does not exist."""

    code: str = "DEFINITION_NOT_FOUND"

    def __init__(self, definition_id: str):
        self.definition_id = definition_id
        super().__init__(f"Workflow definition not found: {definition_id}")


class EntityTypeMismatchError(DefinitionError):
    """Definition targets a different entity type than the one supplied."""

    code: str = "ENTITY_TYPE_MISMATCH"

    def __init__(self, definition_id: str, expected: str, actual: str):
        self.definition_id = definition_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Definition {definition_id} targets {expected!r}, not {actual!r}"
        )


class DefinitionDeprecatedError(DefinitionError):
    """Definition has been soft-deprecated and cannot start new instances."""

    code: str = "DEFINITION_DEPRECATED"

    def __init__(self, definition_id: str):
        self.definition_id = definition_id
        super().__init__(f"Workflow definition is deprecated: {definition_id}")


class DefinitionInUseError(DefinitionError):
    """Definition structure is frozen while a pending instance references it."""

    code: str = "DEFINITION_IN_USE"

    def __init__(self, definition_id: str):
        self.definition_id = definition_id
        super().__init__(
            f"Workflow definition {definition_id} is referenced by an active instance"
        )


# Authorization errors


class AuthorizationError(ApprovalKernelError):
    """Base exception for authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedApproverError(AuthorizationError):
    """Acting approver is not the request's assigned approver."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, request_id: str, actor: str, assigned: str):
        self.request_id = request_id
        self.actor = actor
        self.assigned = assigned
        super().__init__(
            f"{actor} is not the assigned approver for request {request_id}"
        )


# State conflict errors


class StateConflictError(ApprovalKernelError):
    """Base exception for expected, recoverable state conflicts."""

    code: str = "STATE_CONFLICT"


class DuplicateActiveInstanceError(StateConflictError):
    """Entity already has a pending workflow instance."""

    code: str = "DUPLICATE_ACTIVE_INSTANCE"

    def __init__(self, entity_type: str, entity_id: str, instance_id: str | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.instance_id = instance_id
        super().__init__(
            f"{entity_type} {entity_id} already has an active workflow"
        )


class NotPendingError(StateConflictError):
    """Request (or its instance) has already reached a terminal state."""

    code: str = "NOT_PENDING"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Approval request {request_id} is not pending: {status}")


class AlreadyTerminalError(StateConflictError):
    """Instance has already reached a terminal state."""

    code: str = "ALREADY_TERMINAL"

    def __init__(self, instance_id: str, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Workflow instance {instance_id} is already {status}")


class NotBlockedError(StateConflictError):
    """Instance has no stalled step to resume."""

    code: str = "NOT_BLOCKED"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance {instance_id} is not blocked")


class RequestNotFoundError(StateConflictError):
    """Approval request does not exist."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class InstanceNotFoundError(StateConflictError):
    """Workflow instance does not exist."""

    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance not found: {instance_id}")


# Resolution errors


class ResolutionError(ApprovalKernelError):
    """Base exception for approver resolution errors."""

    code: str = "RESOLUTION_ERROR"


class UnresolvableApproverError(ResolutionError):
    """Approver specifier resolved to no concrete identity."""

    code: str = "UNRESOLVABLE_APPROVER"

    def __init__(self, approver_type: str, approver_value: str):
        self.approver_type = approver_type
        self.approver_value = approver_value
        super().__init__(
            f"No current approver for {approver_type}:{approver_value}"
        )


class NoApproverForStepError(ResolutionError):
    """Next sequential step could not be activated.

    The approval that completed the previous step is committed; the
    instance stays pending with ``blocked_step`` set.
    """

    code: str = "NO_APPROVER_FOR_STEP"

    def __init__(self, instance_id: str, step_order: int):
        self.instance_id = instance_id
        self.step_order = step_order
        super().__init__(
            f"Workflow instance {instance_id} has no resolvable approver "
            f"for step {step_order}"
        )


# Concurrency errors


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentTransitionError(ConcurrencyError):
    """Instance was modified by another transaction and retries ran out."""

    code: str = "CONCURRENT_TRANSITION"

    def __init__(self, instance_id: str, attempts: int):
        self.instance_id = instance_id
        self.attempts = attempts
        super().__init__(
            f"Workflow instance {instance_id} was modified concurrently "
            f"({attempts} attempts)"
        )


# Immutability errors


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit errors


class AuditError(ApprovalKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class HistoryChainBrokenError(AuditError):
    """Recomputed history hash does not match the stored chain."""

    code: str = "HISTORY_CHAIN_BROKEN"

    def __init__(self, instance_id: str, seq: int, expected_hash: str, actual_hash: str):
        self.instance_id = instance_id
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"History chain broken for instance {instance_id} at seq {seq}"
        )


# Storage errors


class StorageError(ApprovalKernelError):
    """Base exception for storage failures."""

    code: str = "STORAGE_ERROR"


class StoreUnavailableError(StorageError):
    """The store could not complete the transaction; nothing was written."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Store unavailable: {reason}")
