"""Typed exception hierarchy. Every error autoflow can raise."""


class AutoflowError(Exception):
    """Base exception for all autoflow errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


# ── Workflow definition errors ──────────────────────────────────────────────


class WorkflowError(AutoflowError):
    """Base exception for all workflow-related errors."""
    pass


class WorkflowNotFound(WorkflowError):
    """Requested workflow does not exist or is not accessible by this tenant."""
    def __init__(self, message: str, workflow_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.workflow_id = workflow_id


class WorkflowVersionNotFoundError(WorkflowError):
    """Requested workflow version does not exist in the version history."""
    def __init__(self, message: str, workflow_id: str = "", version: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.workflow_id = workflow_id
        self.version = version


class WorkflowValidationError(WorkflowError):
    """Workflow graph is structurally invalid (cycles, dangling edges, etc.).

    ``violations`` holds GraphViolation objects when raised by the validator,
    plain strings when raised by lower-level helpers.
    """
    def __init__(self, message: str, violations: list = None, **kwargs):
        super().__init__(message, **kwargs)
        self.violations = violations or []

    @property
    def codes(self) -> list:
        return [getattr(v, "code", None) for v in self.violations]


# ── Condition errors ────────────────────────────────────────────────────────


class ConditionError(AutoflowError):
    """Condition evaluation failed."""
    pass


class UnsupportedPredicate(ConditionError):
    """Condition node names a predicate kind the evaluator does not know."""
    def __init__(self, message: str, predicate: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.predicate = predicate


# ── Action errors ───────────────────────────────────────────────────────────


class ActionError(AutoflowError):
    """An action node failed."""
    def __init__(self, message: str, node_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.node_id = node_id


class RetryableActionError(ActionError):
    """Transient failure (gateway timeout, 5xx, CAS contention). Safe to retry the node."""
    pass


class FatalActionError(ActionError):
    """Misconfigured action. Aborts the node's branch, never retried."""
    pass


class RetriesExhausted(ActionError):
    """A node kept failing transiently until its retry budget ran out. Fails the run."""
    def __init__(self, message: str, node_id: str = "", attempts: int = 0, **kwargs):
        super().__init__(message, node_id=node_id, **kwargs)
        self.attempts = attempts


class GatewayError(AutoflowError):
    """Messaging gateway call failed."""
    def __init__(self, message: str, status_code: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class GatewayUnavailable(GatewayError):
    """Timeout, transport error, 429 or 5xx from the gateway."""
    pass


class GatewayRejected(GatewayError):
    """Gateway refused the request (4xx other than 429)."""
    pass


class VersionConflict(AutoflowError):
    """Compare-and-set on a contact's tag set lost against a concurrent writer."""
    def __init__(self, message: str, expected_version: int = 0, actual_version: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.expected_version = expected_version
        self.actual_version = actual_version


# ── Run errors ──────────────────────────────────────────────────────────────


class RunError(AutoflowError):
    """Base exception for run lifecycle errors."""
    def __init__(self, message: str, run_key: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.run_key = run_key


class RunTimeout(RunError):
    """Run exceeded its wall-clock budget."""
    def __init__(self, message: str, run_key: str = "", timeout_seconds: float = 0, **kwargs):
        super().__init__(message, run_key=run_key, **kwargs)
        self.timeout_seconds = timeout_seconds


class WorkflowDeactivated(RunError):
    """Workflow was deactivated while the run was in flight."""
    pass


class RunNotFound(RunError):
    """No ledger entry for the given run key."""
    pass


class RunStateError(RunError):
    """Invalid run state transition (e.g. replaying a COMPLETED run)."""
    pass


# ── Persistence errors ──────────────────────────────────────────────────────


class StoreUnavailable(AutoflowError):
    """Transient persistence failure (connection lost, lock timeout)."""
    pass
