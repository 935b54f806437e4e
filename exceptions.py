# ============================================================================
# EXCEPTIONS
# ============================================================================
# STATUS: Shared - used by every layer
# PURPOSE: Exception hierarchy separating contract violations, expected
#          orchestration failures and fatal configuration problems
# EXPORTS: ContractViolationError, BusinessLogicError, LockConflictError,
#          RunInProgressError, ExternalServiceError, StaleRunError,
#          ResourceNotFoundError, ValidationError, ConfigurationError,
#          CancellationRequested
# DEPENDENCIES: None (standard library only)
# ============================================================================

"""
Custom Exception Hierarchy

Distinguishes between:
1. Contract Violations (programming bugs that need fixing)
2. Business Logic Failures (expected runtime issues: lock held, Athena down)
3. Configuration Errors (fatal, surfaced immediately, never retried)
4. Cancellation (a normal terminal outcome, not a failure)

HTTP triggers translate these into status codes via core.errors.
"""


class ContractViolationError(TypeError):
    """
    Raised when component contracts are violated (programming bugs).

    These should NEVER be caught and handled - they indicate bugs
    that need to be fixed in the code.

    Examples:
        - Workload returns a dict where an AudienceResult is required
        - Status store handed a model of the wrong type
    """
    pass


class BusinessLogicError(Exception):
    """
    Base class for expected runtime business logic failures.

    These are normal failures that occur during system operation
    and should be handled gracefully without crashing.
    """
    pass


class LockConflictError(BusinessLogicError):
    """
    Another operation holds the job's sync lock.

    Recoverable by caller retry, or by a forced release
    (POST /sync/{job_id} with force=true, or the cancel endpoint).
    """

    def __init__(self, message: str, job_id: str = None):
        super().__init__(message)
        self.job_id = job_id


class RunInProgressError(LockConflictError):
    """
    A pipeline run for the same dataset and country is still running
    and has not yet exceeded the maximum run duration.
    """
    pass


class ExternalServiceError(BusinessLogicError):
    """
    Object storage, query service or queue call failed.

    Retried per object during a sync; fatal for query submission and
    status checks in the pipeline, where the message is kept verbatim.

    Examples:
        - Athena StartQueryExecution throttled or rejected
        - Source container unreachable during enumeration
        - Service Bus send failed
    """

    def __init__(self, message: str, service: str = None):
        super().__init__(message)
        self.service = service


class StaleRunError(BusinessLogicError):
    """
    Work arrived for a pipeline run that is no longer the active one.

    Raised when a batch message names a superseded run_id, or a run that
    already left the processing phase (timed out, stopped, finished).
    """
    pass


class ResourceNotFoundError(BusinessLogicError):
    """
    Requested resource does not exist.

    Examples:
        - Job record not in the status container
        - No active run for a dataset/country
        - Continue request with a mismatched run_id
    """
    pass


class ValidationError(BusinessLogicError):
    """
    Business validation failed.

    Note: This is different from ContractViolationError.
    This is for request and business rule validation, not type contracts.

    Examples:
        - Sync requested for a job whose upstream data is not ready
        - Unknown audience id in a batch request
        - Malformed destination location
    """
    pass


class ConfigurationError(Exception):
    """
    System configuration error.

    Fatal, surfaced immediately, no retry.

    Examples:
        - Missing storage account or Athena output location
        - No Service Bus connection configured
    """
    pass


class CancellationRequested(Exception):
    """
    Cooperative cancellation was observed at a checkpoint.

    Not an error: the caller records a cancelled terminal state.
    """

    def __init__(self, message: str = "Cancellation requested", completed: int = 0):
        super().__init__(message)
        self.completed = completed
