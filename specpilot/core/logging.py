import sys
import os
from datetime import datetime
from typing import Any, Optional


# ═══════════════════════════════════════════════════════════════════════════════
# LOG FILTERING
# ═══════════════════════════════════════════════════════════════════════════════
# Only these scopes are shown at INFO level
# Everything else is gated behind DEBUG

INFO_SCOPES = {
    "ORCHESTRATOR", # Run lifecycle
    "PLANNER",      # Plan composition
    "WRITER",       # Suite generation
    "EXECUTOR",     # Child-process execution
    "HEALER",       # Triage + fixes
    "LLM",          # Gateway boundary
    "API",          # HTTP surface
    "MONITORING",
}

# DEBUG-only scopes (hidden by default)
DEBUG_SCOPES = {
    "PROCESS",
    "FILES",
    "REGISTRY",
    "PROMPT",
    "REPORTER",
}

# Check if DEBUG mode is enabled
DEBUG_MODE = os.getenv("SPECPILOT_DEBUG", "false").lower() == "true"


def log(scope: str, message: str, data: Any = None, run_id: Optional[str] = None) -> None:
    """
    Unified logging function for SpecPilot.

    Only INFO_SCOPES are shown by default.
    Set SPECPILOT_DEBUG=true to see all scopes.
    """
    if not DEBUG_MODE and scope not in INFO_SCOPES:
        return

    timestamp = datetime.now().strftime("%H:%M:%S")
    prefix = f"[{timestamp}] [{scope}]"

    if run_id:
        prefix += f" [{run_id[:8]}]"

    print(f"{prefix} {message}")

    if data:
        print(f"  Data: {data}")

    sys.stdout.flush()


def log_run(run_id: str, phase: str, message: str) -> None:
    """Mirror a run log entry: [Agent:xxxxxxxx] [phase] message."""
    print(f"[Agent:{run_id[:8]}] [{phase}] {message}")
    sys.stdout.flush()


def log_section(scope: str, title: str, run_id: Optional[str] = None) -> None:
    """
    Log a section header with visual separator.
    """
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"\n{'='*60}")
    if run_id:
        print(f"[{timestamp}] [{scope}] [{run_id[:8]}] {title}")
    else:
        print(f"[{timestamp}] [{scope}] {title}")
    print(f"{'='*60}")
    sys.stdout.flush()
