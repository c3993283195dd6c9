"""Bridge to the external UI-automation scripts.

Each business step is one external process.  Parameters travel as
environment variables (``PO_NUMBER``, ``INVOICE_NUMBER``, ``MATERIAL`` ...)
and the combined stdout/stderr is handed back untouched; interpreting it is
the orchestrator's job.  Bulk runs instead keep a single driver process open
and talk to it with one JSON object per line, so the browser login is reused
across records.

Retries, popup handling and element waits happen inside the scripts.
"""
from __future__ import annotations

import asyncio
import itertools
import json
import logging
import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from p2pflow.core.errors import SessionFailure
from p2pflow.domain import Stage

logger = logging.getLogger(__name__)

DEFAULT_STEP_COMMANDS: dict[Stage, str] = {
    Stage.PURCHASE_ORDER: "npx playwright test tests/flows/PurchaseOrderFlow.spec.ts",
    Stage.GOODS_RECEIPT: "npx playwright test tests/flows/GoodsReceiptFlow.spec.ts",
    Stage.SUPPLIER_INVOICE: "npx playwright test tests/flows/SupplierInvoiceFlow.spec.ts",
    Stage.PAYMENT: "npx playwright test tests/flows/PaymentFlow.spec.ts",
}
DEFAULT_SESSION_COMMAND = "npx ts-node tests/driver/session.ts"
DEFAULT_TIMEOUT = 600.0
CANCELLED_TEXT = "Execution cancelled by user"
SESSION_CLOSED_TEXT = "Browser session closed: the automation driver exited unexpectedly"


@dataclass(slots=True)
class StepOutput:
    """Raw outcome of one automation step."""

    stage: Stage
    success: bool
    output: str = ""
    return_code: int | None = None
    error: str | None = None
    cancelled: bool = False
    timed_out: bool = False

    @property
    def diagnostic(self) -> str:
        """Text to classify when the step failed."""

        if self.error and self.output:
            return f"{self.error}\n{self.output}"
        return self.error or self.output


class RunControl:
    """Cancellation handle for one command run and the processes it started."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self.cancelled = False
        self._processes: set[asyncio.subprocess.Process] = set()

    def attach(self, process: asyncio.subprocess.Process) -> None:
        self._processes.add(process)
        if self.cancelled:
            self._stop(process)

    def detach(self, process: asyncio.subprocess.Process) -> None:
        self._processes.discard(process)

    def cancel(self) -> None:
        self.cancelled = True
        for process in list(self._processes):
            self._stop(process)

    @staticmethod
    def _stop(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            logger.debug("Automation process %s already exited", process.pid)


class AutomationSession(Protocol):
    """A long-lived automation session used for bulk purchase orders."""

    async def create_purchase_order(self, params: dict[str, str]) -> StepOutput: ...

    async def recover(self) -> bool: ...

    async def reset(self) -> None: ...

    async def close(self) -> None: ...

    def cancel(self) -> None: ...


class AutomationRunner(Protocol):
    """Contract for launching automation steps."""

    async def run_step(
        self, stage: Stage, params: dict[str, str], control: RunControl | None = None
    ) -> StepOutput: ...

    def open_session(self) -> AutomationSession: ...


def _env_command(name: str, default: str) -> list[str]:
    return shlex.split(os.getenv(name) or default)


def _workdir() -> Path | None:
    value = os.getenv("AUTOMATION_WORKDIR")
    return Path(value).expanduser().resolve() if value else None


def _timeout() -> float:
    try:
        return float(os.getenv("AUTOMATION_TIMEOUT") or DEFAULT_TIMEOUT)
    except ValueError:
        return DEFAULT_TIMEOUT


class SubprocessAutomationRunner:
    """Runs each step as ``AUTOMATION_<STAGE>_COMMAND`` in a child process."""

    def __init__(
        self,
        commands: dict[Stage, list[str]] | None = None,
        *,
        session_command: list[str] | None = None,
        workdir: Path | None = None,
        timeout: float | None = None,
    ) -> None:
        self._commands = commands or {
            stage: _env_command(f"AUTOMATION_{stage.name}_COMMAND", default)
            for stage, default in DEFAULT_STEP_COMMANDS.items()
        }
        self._session_command = session_command or _env_command(
            "AUTOMATION_SESSION_COMMAND", DEFAULT_SESSION_COMMAND
        )
        self._workdir = workdir or _workdir()
        self._timeout = timeout or _timeout()

    async def run_step(
        self, stage: Stage, params: dict[str, str], control: RunControl | None = None
    ) -> StepOutput:
        if control is not None and control.cancelled:
            return StepOutput(stage=stage, success=False, error=CANCELLED_TEXT, cancelled=True)
        command = self._commands[stage]
        env = {**os.environ, **{key: str(value) for key, value in params.items()}}
        logger.info("Launching %s step: %s (params=%s)", stage.value, " ".join(command), params)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(self._workdir) if self._workdir else None,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            return StepOutput(stage=stage, success=False, error=f"Failed to launch automation step: {exc}")

        if control is not None:
            control.attach(process)
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return StepOutput(
                stage=stage,
                success=False,
                return_code=process.returncode,
                error=f"Automation step timed out: Timeout {int(self._timeout * 1000)}ms exceeded",
                timed_out=True,
            )
        finally:
            if control is not None:
                control.detach(process)

        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        if control is not None and control.cancelled:
            return StepOutput(
                stage=stage,
                success=False,
                output=output,
                return_code=process.returncode,
                error=CANCELLED_TEXT,
                cancelled=True,
            )
        if process.returncode != 0:
            return StepOutput(
                stage=stage,
                success=False,
                output=output,
                return_code=process.returncode,
                error=f"Automation step exited with code {process.returncode}",
            )
        return StepOutput(stage=stage, success=True, output=output, return_code=0)

    def open_session(self) -> "SubprocessAutomationSession":
        return SubprocessAutomationSession(self._session_command, workdir=self._workdir, timeout=self._timeout)


class SubprocessAutomationSession:
    """One driver process shared by consecutive bulk records.

    Requests are written as ``{"id": n, "action": ..., "params": {...}}``
    lines; the driver answers with ``{"id": n, "ok": bool, "output": str,
    "error": str}``.  Replies carrying another request's id arrived after
    that request timed out and are dropped.  Any other line the driver
    prints is kept as log output.
    """

    def __init__(self, command: list[str], *, workdir: Path | None = None, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._command = command
        self._workdir = workdir
        self._timeout = timeout
        self._process: asyncio.subprocess.Process | None = None
        self._request_ids = itertools.count(1)
        self._cancelled = False

    async def _ensure_process(self) -> asyncio.subprocess.Process:
        if self._process is None or self._process.returncode is not None:
            logger.info("Starting automation session: %s", " ".join(self._command))
            self._process = await asyncio.create_subprocess_exec(
                *self._command,
                cwd=str(self._workdir) if self._workdir else None,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        return self._process

    async def _read_reply(self, process: asyncio.subprocess.Process, request_id: int) -> tuple[dict[str, Any], str]:
        assert process.stdout is not None
        log_lines: list[str] = []
        while True:
            raw = await process.stdout.readline()
            if not raw:
                raise SessionFailure(SESSION_CLOSED_TEXT)
            line = raw.decode("utf-8", errors="replace").rstrip()
            try:
                reply = json.loads(line)
            except json.JSONDecodeError:
                log_lines.append(line)
                continue
            if not isinstance(reply, dict) or "ok" not in reply:
                log_lines.append(line)
                continue
            if reply.get("id") == request_id:
                return reply, "\n".join(log_lines)
            logger.warning(
                "Dropping late driver reply for request %s while waiting for %s: %s",
                reply.get("id"),
                request_id,
                str(reply.get("output") or reply.get("error") or "")[:200],
            )

    async def _request(self, action: str, params: dict[str, str] | None = None) -> tuple[dict[str, Any], str]:
        process = await self._ensure_process()
        assert process.stdin is not None
        request_id = next(self._request_ids)
        payload = json.dumps({"id": request_id, "action": action, "params": params or {}})
        process.stdin.write(payload.encode("utf-8") + b"\n")
        await process.stdin.drain()
        return await asyncio.wait_for(self._read_reply(process, request_id), timeout=self._timeout)

    async def create_purchase_order(self, params: dict[str, str]) -> StepOutput:
        if self._cancelled:
            return StepOutput(stage=Stage.PURCHASE_ORDER, success=False, error=CANCELLED_TEXT, cancelled=True)
        try:
            reply, log_output = await self._request("create_purchase_order", params)
        except asyncio.TimeoutError:
            return StepOutput(
                stage=Stage.PURCHASE_ORDER,
                success=False,
                error=f"Bulk purchase order timed out: Timeout {int(self._timeout * 1000)}ms exceeded",
                timed_out=True,
            )
        except (SessionFailure, OSError) as exc:
            if self._cancelled:
                return StepOutput(stage=Stage.PURCHASE_ORDER, success=False, error=CANCELLED_TEXT, cancelled=True)
            return StepOutput(stage=Stage.PURCHASE_ORDER, success=False, error=str(exc) or SESSION_CLOSED_TEXT)

        output = "\n".join(part for part in (log_output, str(reply.get("output") or "")) if part)
        if reply.get("ok"):
            return StepOutput(stage=Stage.PURCHASE_ORDER, success=True, output=output)
        return StepOutput(
            stage=Stage.PURCHASE_ORDER,
            success=False,
            output=output,
            error=str(reply.get("error") or "Bulk purchase order failed"),
        )

    async def recover(self) -> bool:
        """Ask the driver to navigate back to its home screen."""

        try:
            reply, _ = await self._request("recover")
        except (asyncio.TimeoutError, SessionFailure, OSError) as exc:
            logger.warning("Session recovery failed: %s", exc)
            return False
        return bool(reply.get("ok"))

    async def reset(self) -> None:
        """Throw the driver away; the next request starts a fresh one."""

        await self._terminate()
        self._process = None

    async def close(self) -> None:
        if self._process is None or self._process.returncode is not None:
            return
        try:
            await asyncio.wait_for(self._request("close"), timeout=10)
        except (asyncio.TimeoutError, SessionFailure, OSError) as exc:
            logger.debug("Driver did not acknowledge close: %s", exc)
        await self._terminate()

    def cancel(self) -> None:
        self._cancelled = True
        if self._process is not None and self._process.returncode is None:
            try:
                self._process.terminate()
            except ProcessLookupError:
                logger.debug("Automation session already exited")

    async def _terminate(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=10)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()


_runner: AutomationRunner | None = None


def configure_automation_runner(runner: AutomationRunner) -> None:
    """Install the runner used by the orchestrator and bulk worker."""

    global _runner
    _runner = runner


def get_automation_runner() -> AutomationRunner:
    """Return the configured runner, creating the subprocess one on first use."""

    global _runner
    if _runner is None:
        _runner = SubprocessAutomationRunner()
    return _runner
