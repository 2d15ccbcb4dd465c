"""
Run orchestration: state machine, run registry, dependency ordering.

Import the orchestrator from `specpilot.orchestration.orchestrator`; the
agents depend on `task_graph` and must not pull in the orchestrator.
"""
