"""
Exception hierarchy for the incentive pipeline.

Local recovery cases (missing data, unclassifiable metric names) never
raise; they are recorded in traces instead. Everything here surfaces to
the caller.
"""


class IncentiveError(Exception):
    """Base class for all pipeline errors."""


class StructuralError(IncentiveError):
    """
    Raised when a plan or binding is malformed and a run cannot proceed.

    Carries the plan and component ids so the failure can be diagnosed
    without re-running.
    """

    def __init__(self, message: str, plan_id: str | None = None, component_id: str | None = None):
        self.message = message
        self.plan_id = plan_id
        self.component_id = component_id
        context = []
        if plan_id:
            context.append(f"plan={plan_id}")
        if component_id:
            context.append(f"component={component_id}")
        prefix = f"[{' '.join(context)}] " if context else ""
        super().__init__(f"{prefix}{message}")

    def to_dict(self) -> dict:
        return {
            "type": "structural",
            "message": self.message,
            "plan_id": self.plan_id,
            "component_id": self.component_id,
        }


class LifecycleError(IncentiveError):
    """Raised when a batch state transition is not allowed."""

    def __init__(self, from_state: str, to_state: str, reason: str):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        super().__init__(f"Invalid transition {from_state} -> {to_state}: {reason}")

    def to_dict(self) -> dict:
        return {
            "type": "lifecycle",
            "from_state": self.from_state,
            "to_state": self.to_state,
            "message": self.reason,
        }


class TenantScopeError(IncentiveError):
    """Raised when an object is read or written outside its tenant."""

    def __init__(self, expected_tenant: str, actual_tenant: str, object_kind: str):
        self.expected_tenant = expected_tenant
        self.actual_tenant = actual_tenant
        self.object_kind = object_kind
        super().__init__(
            f"{object_kind} belongs to tenant {actual_tenant}, not {expected_tenant}"
        )


class NotFoundError(IncentiveError):
    """Raised when a tenant-scoped lookup finds nothing."""

    def __init__(self, object_kind: str, object_id: str):
        self.object_kind = object_kind
        self.object_id = object_id
        super().__init__(f"{object_kind} not found: {object_id}")
