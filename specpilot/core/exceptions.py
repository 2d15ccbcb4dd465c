# specpilot/core/exceptions.py
"""
Custom exceptions for the application.

Fatal run errors carry a `kind` that ends up in RunState.errorKind.
PlanningDegraded, TestFailure and HealRejected are data, not exceptions.
"""
from typing import Optional, Dict, Any


class SpecPilotError(Exception):
    """Base exception for all SpecPilot errors."""
    kind = "UnexpectedFailure"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SpecNotFoundError(SpecPilotError):
    """Spec id unknown to the spec provider."""
    kind = "SpecNotFound"

    def __init__(self, spec_id: str):
        super().__init__(f"Spec not found: {spec_id}", {"spec_id": spec_id})
        self.spec_id = spec_id


class RunNotFoundError(SpecPilotError):
    """Run id unknown to the registry."""
    kind = "RunNotFound"

    def __init__(self, run_id: str):
        super().__init__(f"Run not found: {run_id}", {"run_id": run_id})
        self.run_id = run_id


class GatewayUnavailableError(SpecPilotError):
    """LLM provider error - surfaces as a failed run."""
    kind = "GatewayUnavailable"

    def __init__(self, provider: str, message: str):
        super().__init__(
            f"LLM error ({provider}): {message}",
            {"provider": provider}
        )
        self.provider = provider


class WriteFailureError(SpecPilotError):
    """File persistence or code generation failure."""
    kind = "WriteFailure"

    def __init__(self, path: str, message: str):
        super().__init__(
            f"Cannot write to {path}: {message}",
            {"path": path}
        )
        self.path = path


class InfrastructureFailureError(SpecPilotError):
    """The test tool could not run at all (as opposed to tests failing)."""
    kind = "InfrastructureFailure"

    def __init__(self, message: str, output: str = "", exit_code: Optional[int] = None):
        super().__init__(message, {"exit_code": exit_code})
        self.output = output
        self.exit_code = exit_code


class ProcessSpawnError(SpecPilotError):
    """Child process could not be started."""
    kind = "ProcessSpawnError"

    def __init__(self, command: str, message: str):
        super().__init__(f"Cannot start '{command}': {message}", {"command": command})
        self.command = command


class PhaseTimeoutError(SpecPilotError):
    """A suspension point exceeded its timeout."""
    kind = "PhaseTimeout"

    def __init__(self, operation: str, seconds: float):
        super().__init__(
            f"{operation} timed out after {seconds:g}s",
            {"operation": operation, "seconds": seconds}
        )
        self.operation = operation
        self.seconds = seconds


class InvalidTransitionError(SpecPilotError):
    """Run state machine transition not allowed."""
    kind = "InvalidTransition"

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Invalid phase transition: {current} -> {target}",
            {"from": current, "to": target}
        )


class RegistryOwnershipError(SpecPilotError):
    """A task other than the run's driver tried to mutate its state."""
    kind = "RegistryOwnership"

    def __init__(self, run_id: str):
        super().__init__(f"Run {run_id} can only be mutated by its driving task", {"run_id": run_id})
        self.run_id = run_id


class ParseError(SpecPilotError):
    """JSON/output parsing error."""
    kind = "ParseError"


class EmptyPlanError(SpecPilotError):
    """Nothing to test: no operations selected or the planner produced no items."""
    kind = "EmptyPlan"

    def __init__(self, spec_id: str, message: str = "no test plan items"):
        super().__init__(f"Empty plan for spec {spec_id}: {message}", {"spec_id": spec_id})
        self.spec_id = spec_id
