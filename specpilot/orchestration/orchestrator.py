# specpilot/orchestration/orchestrator.py
"""
Orchestrator - drives one run through the state machine

    planning -> writing -> executing -> reflecting -> (fixing -> executing)* -> done | failed

Each run gets one background task. Phases inside a run are sequential;
runs are independent of each other. Remaining test failures end a run in
`done`; only unexpected errors end it in `failed`.
"""
import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Union

from specpilot.agents import Executor, MarkdownReporter, Planner, SelfHealer, TestWriter
from specpilot.core.config import RunSettings, settings
from specpilot.core.exceptions import (
    EmptyPlanError,
    InfrastructureFailureError,
    PhaseTimeoutError,
    RunNotFoundError,
    SpecNotFoundError,
    SpecPilotError,
)
from specpilot.core.logging import log, log_section
from specpilot.lib.file_system import FileStore, FileView, sanitize_name
from specpilot.lib.monitoring import run_finished, run_started
from specpilot.llm.adapter import LLMGateway
from specpilot.models import (
    ExecutionResult,
    IterationResult,
    NormalizedSpec,
    OperationFilter,
    RunOutcome,
    RunPhase,
    RunState,
    TestPlan,
)
from specpilot.orchestration.registry import RunRegistry
from specpilot.specs.provider import SpecProvider


class Orchestrator:
    """Starts runs, exposes their status and drives the pipeline."""

    def __init__(
        self,
        registry: RunRegistry,
        spec_provider: SpecProvider,
        gateway: Optional[LLMGateway] = None,
        planner: Optional[Planner] = None,
        writer: Optional[TestWriter] = None,
        executor: Optional[Executor] = None,
        healer: Optional[SelfHealer] = None,
        file_store: Optional[FileStore] = None,
        config: Optional[RunSettings] = None,
    ):
        self.registry = registry
        self.spec_provider = spec_provider
        self.config = config or settings.run
        self.file_store = file_store or FileStore()

        gateway = gateway or LLMGateway()
        self.planner = planner or Planner(gateway)
        self.writer = writer or TestWriter(gateway, self.file_store)
        self.executor = executor or Executor(file_store=self.file_store, reporter=MarkdownReporter(self.file_store))
        self.healer = healer or SelfHealer(gateway, self.writer, self.executor)

        self._tasks: Dict[str, asyncio.Task] = {}

    # ═══════════════════════════════════════════════════════════════════════
    # PUBLIC API
    # ═══════════════════════════════════════════════════════════════════════

    def start_run(
        self,
        spec_id: str,
        max_iterations: Optional[int] = None,
        base_directory: Union[str, Path, None] = None,
        base_package: Optional[str] = None,
        operation_filter: Optional[OperationFilter] = None,
    ) -> str:
        """Register a run and schedule its driving task. Needs a running loop."""
        max_iterations = self.config.default_max_iterations if max_iterations is None else max_iterations
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

        state = self.registry.create(spec_id, max_iterations)
        run_id = state.run_id
        task = asyncio.create_task(
            self._drive(
                run_id,
                spec_id,
                Path(base_directory) if base_directory else self.config.default_base_directory,
                base_package or self.config.default_base_package,
                operation_filter,
            ),
            name=f"run-{run_id[:8]}",
        )
        self._tasks[run_id] = task
        log("ORCHESTRATOR", f"🚀 Run {run_id} accepted for spec {spec_id} (max {max_iterations} iterations)")
        return run_id

    def get_status(self, run_id: str) -> Optional[RunState]:
        return self.registry.snapshot(run_id)

    async def list_generated_files(self, run_id: str) -> List[FileView]:
        state = self.registry.snapshot(run_id)
        if state is None:
            raise RunNotFoundError(run_id)
        if not state.project_path:
            return []
        return await self.file_store.list_files(Path(state.project_path))

    def cancel_run(self, run_id: str) -> bool:
        """Ask a run to stop before its next iteration."""
        accepted = self.registry.request_cancel(run_id)
        if accepted:
            log("ORCHESTRATOR", "🛑 Cancellation requested", run_id=run_id)
        return accepted

    async def wait(self, run_id: str) -> Optional[RunState]:
        """Wait for the run's task to finish and return the final snapshot."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)
        return self.registry.snapshot(run_id)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @staticmethod
    def project_path(base_directory: Path, title: str, run_id: str) -> Path:
        """Per-run suite directory so concurrent runs of one spec never collide."""
        return base_directory / f"{sanitize_name(title)}-{run_id[:8]}"

    # ═══════════════════════════════════════════════════════════════════════
    # DRIVER
    # ═══════════════════════════════════════════════════════════════════════

    async def _drive(
        self,
        run_id: str,
        spec_id: str,
        base_directory: Path,
        base_package: str,
        operation_filter: Optional[OperationFilter],
    ) -> None:
        self.registry.claim(run_id)
        run_started()
        log_section("ORCHESTRATOR", f"RUN {run_id[:8]} - spec {spec_id}", run_id=run_id)
        try:
            await self._pipeline(run_id, spec_id, base_directory, base_package, operation_filter)
        except SpecPilotError as e:
            self._fail(run_id, e.kind, e.message)
        except asyncio.CancelledError:
            self._fail(run_id, "Cancelled", "Run task was cancelled")
            raise
        except Exception as e:
            self._fail(run_id, "UnexpectedFailure", f"{type(e).__name__}: {e}")
        finally:
            state = self.registry.snapshot(run_id)
            outcome = state.outcome or RunOutcome.NOT_EXECUTED
            run_finished(outcome.value)
            log("ORCHESTRATOR", f"🏁 Run ended in '{state.phase.value}' ({outcome.value})", run_id=run_id)
            self.registry.release(run_id)
            self._tasks.pop(run_id, None)

    def _fail(self, run_id: str, kind: str, message: str) -> None:
        state = self.registry.snapshot(run_id)
        if state.phase.is_terminal:
            log("ORCHESTRATOR", f"⚠️ {kind} after terminal phase ignored: {message}", run_id=run_id)
            return
        self.registry.set_error(run_id, kind, message)
        self.registry.append_log(run_id, f"❌ {kind}: {message}")
        self.registry.set_phase(run_id, RunPhase.FAILED)

    def _finish(self, run_id: str, result: ExecutionResult, reason: str) -> None:
        outcome = RunOutcome.ALL_PASSED if result.failed == 0 else RunOutcome.REMAINING_FAILURES
        self.registry.set_result(run_id, result, outcome)
        self.registry.append_log(
            run_id,
            f"{reason} - {result.passed}/{result.total} passed, {result.failed} failed",
        )
        self.registry.set_phase(run_id, RunPhase.DONE)

    async def _load_spec(self, spec_id: str) -> NormalizedSpec:
        timeout = self.config.spec_lookup_timeout
        try:
            spec = await asyncio.wait_for(self.spec_provider.get_by_id(spec_id), timeout=timeout)
        except asyncio.TimeoutError:
            raise PhaseTimeoutError("spec lookup", timeout)
        if spec is None:
            raise SpecNotFoundError(spec_id)
        return spec

    # ═══════════════════════════════════════════════════════════════════════
    # PIPELINE
    # ═══════════════════════════════════════════════════════════════════════

    async def _pipeline(
        self,
        run_id: str,
        spec_id: str,
        base_directory: Path,
        base_package: str,
        operation_filter: Optional[OperationFilter],
    ) -> None:
        registry = self.registry

        # ─── planning ───
        registry.append_log(run_id, f"Loading spec {spec_id}")
        spec = await self._load_spec(spec_id)
        operations = operation_filter.apply(spec.operations) if operation_filter else list(spec.operations)
        if not operations:
            raise EmptyPlanError(spec_id, "no operations match the operation filter")

        plan = await self.planner.plan(spec, operations, run_id=run_id)
        if not plan.items:
            raise EmptyPlanError(spec_id)
        registry.set_plan(run_id, plan)
        registry.append_log(run_id, self._plan_summary(plan))
        registry.set_phase(run_id, RunPhase.WRITING)

        # ─── writing ───
        project_path = self.project_path(base_directory, spec.title, run_id)
        registry.set_project_path(run_id, str(project_path))
        suite = await self.writer.write(plan, project_path, base_package, run_id)
        registry.append_log(run_id, f"Wrote {len(suite.files)} files ({len(suite.modules)} test modules) to {project_path}")
        registry.set_phase(run_id, RunPhase.EXECUTING)

        # ─── execute / reflect / fix ───
        max_iterations = registry.snapshot(run_id).max_iterations
        iteration = 0
        previous: Optional[ExecutionResult] = None
        backup: Dict[str, Optional[str]] = {}

        while True:
            registry.append_log(run_id, f"Executing suite (iteration {iteration + 1}/{max_iterations})")
            try:
                result = await self.executor.execute(project_path, run_id)
            except InfrastructureFailureError as e:
                if previous is None:
                    raise
                registry.append_log(run_id, f"⚠️ Suite could not execute after fixes ({e.message}); reverting them")
                await self.writer.restore(project_path, backup)
                self._finish(run_id, previous, "Fixes reverted")
                return

            entry = IterationResult(
                iteration=iteration,
                passed=result.passed,
                failed=result.failed,
                total=result.total,
            )
            registry.append_log(run_id, f"{result.passed}/{result.total} passed, {result.failed} failed")

            if result.failed == 0:
                registry.add_iteration_result(run_id, entry)
                self._finish(run_id, result, "All tests passed")
                return

            registry.set_phase(run_id, RunPhase.REFLECTING)

            if registry.is_cancel_requested(run_id):
                registry.add_iteration_result(run_id, entry)
                registry.append_log(run_id, "Run cancelled")
                self._finish(run_id, result, "Cancelled")
                return

            if iteration + 1 >= max_iterations:
                entry.api_defects = [c.name for c in self.healer.triage(result, plan).api_defects]
                registry.add_iteration_result(run_id, entry)
                self._finish(run_id, result, f"Iteration budget exhausted ({max_iterations})")
                return

            files = await self.writer.read_sources(project_path)
            report = await self.healer.diagnose(result, files, plan, iteration, run_id)
            registry.append_log(run_id, f"Diagnosis: {report.failure_source} - {report.summary or '(no summary)'}")
            entry.fixes_rejected = len(report.rejected)
            entry.api_defects = report.api_defects
            if report.api_defects:
                registry.append_log(run_id, f"Likely API defects: {', '.join(report.api_defects)}")

            if not report.fixes:
                registry.add_iteration_result(run_id, entry)
                self._finish(run_id, result, f"No applicable fixes ({report.summary or report.failure_source})")
                return

            registry.set_phase(run_id, RunPhase.FIXING)
            applied = await self.healer.apply(project_path, report.fixes, run_id)
            entry.fixes_applied = len(applied.applied)
            entry.heal_failed = applied.heal_failed
            registry.add_iteration_result(run_id, entry)
            registry.append_log(
                run_id,
                f"Applied {len(applied.applied)} fixes, reverted {len(applied.reverted)}, "
                f"rejected {len(report.rejected)}",
            )

            if not applied.applied:
                self._finish(run_id, result, "Every fix failed to compile")
                return

            iteration += 1
            registry.set_iteration(run_id, iteration)
            previous = result
            backup = applied.backup
            registry.set_phase(run_id, RunPhase.EXECUTING)

    @staticmethod
    def _plan_summary(plan: TestPlan) -> str:
        counts = plan.counts()
        summary = (
            f"Plan: {len(plan.items)} tests ({counts['positive']} positive, {counts['negative']} negative, "
            f"{counts['edge-case']} edge-case), {len(plan.dependencies)} dependencies"
        )
        if plan.degraded:
            summary += " [degraded: LLM plan unusable, fallback used]"
        return summary
