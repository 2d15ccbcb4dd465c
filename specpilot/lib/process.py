# specpilot/lib/process.py
"""
Child-process execution for the generated suite.

subprocess.run is pushed to a worker thread (asyncio.to_thread) so a long
pytest run never blocks the event loop that serves status reads.
"""
import asyncio
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from specpilot.core.exceptions import ProcessSpawnError
from specpilot.core.logging import log


@dataclass
class ProcessResult:
    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def output(self) -> str:
        if self.stderr:
            return f"{self.stdout}\n{self.stderr}".strip()
        return self.stdout


def _as_text(value: Union[str, bytes, None]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class ProcessRunner:
    """Runs a command to completion under a hard timeout."""

    async def run(
        self,
        command: List[str],
        cwd: Union[str, Path],
        env: Optional[Dict[str, str]] = None,
        timeout: float = 120,
    ) -> ProcessResult:
        merged_env = dict(os.environ)
        if env:
            merged_env.update(env)

        log("PROCESS", f"▶️ {' '.join(command)} (cwd={cwd}, timeout={timeout:g}s)")
        started = time.monotonic()
        try:
            completed = await asyncio.to_thread(
                subprocess.run,
                command,
                cwd=str(cwd),
                env=merged_env,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            log("PROCESS", f"⏱️ Timed out after {timeout:g}s: {' '.join(command)}")
            return ProcessResult(
                stdout=_as_text(e.stdout),
                stderr=_as_text(e.stderr),
                exit_code=-1,
                timed_out=True,
                duration_seconds=time.monotonic() - started,
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
            raise ProcessSpawnError(command[0], str(e))

        result = ProcessResult(
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            exit_code=completed.returncode,
            duration_seconds=time.monotonic() - started,
        )
        log("PROCESS", f"Exit code {result.exit_code} in {result.duration_seconds:.1f}s")
        return result
