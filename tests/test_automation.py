import asyncio
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from p2pflow.application.jobs import JobManager
from p2pflow.core.document_identifier import DEFAULT_TABLE
from p2pflow.domain import Stage
from p2pflow.extractors.bulk_records import BulkPORecord
from p2pflow.infrastructure import CsvDocumentLedger, RunControl, SubprocessAutomationRunner
from p2pflow.infrastructure.automation import CANCELLED_TEXT, SESSION_CLOSED_TEXT, SubprocessAutomationSession
from p2pflow.workers.bulk import BulkWorker

DRIVER = """
import json
import sys
import time

while True:
    line = sys.stdin.readline()
    if not line:
        break
    request = json.loads(line)
    action = request["action"]
    params = request.get("params") or {}
    reply = {"id": request.get("id"), "ok": True, "output": "home"}
    if action == "create_purchase_order":
        material = params.get("MATERIAL", "")
        if material == "SLOW":
            time.sleep(1.5)
        if material == "CRASH":
            sys.exit(1)
        print("filling form for " + material, flush=True)
        if material == "BLOCKED":
            reply = {"id": request.get("id"), "ok": False, "error": "Supplier 100 is blocked for posting"}
        else:
            reply["output"] = "PO Number: 45%08d" % int(params.get("QUANTITY", "0"))
    print(json.dumps(reply), flush=True)
    if action == "close":
        break
"""


def _script(tmp_path, name, body):
    path = tmp_path / name
    path.write_text(body, encoding="utf-8")
    return [sys.executable, str(path)]


def _runner(tmp_path, body, *, timeout=10.0, stage=Stage.GOODS_RECEIPT):
    return SubprocessAutomationRunner({stage: _script(tmp_path, "step.py", body)}, timeout=timeout)


# ----------------------------------------------------------------------
# one process per step
# ----------------------------------------------------------------------
def test_step_receives_parameters_as_environment(tmp_path):
    runner = _runner(
        tmp_path,
        "import os, sys\nprint('Material Document for ' + os.environ['PO_NUMBER'])\nsys.stderr.write('warning on stderr\\n')\n",
    )
    output = asyncio.run(runner.run_step(Stage.GOODS_RECEIPT, {"PO_NUMBER": "4500001234"}))
    assert output.success
    assert output.return_code == 0
    assert "Material Document for 4500001234" in output.output
    assert "warning on stderr" in output.output


def test_non_zero_exit_is_a_failure_with_output(tmp_path):
    runner = _runner(tmp_path, "import sys\nprint('Error: element not found')\nsys.exit(3)\n")
    output = asyncio.run(runner.run_step(Stage.GOODS_RECEIPT, {}))
    assert not output.success
    assert output.return_code == 3
    assert output.error == "Automation step exited with code 3"
    assert "element not found" in output.diagnostic


def test_step_is_killed_after_timeout(tmp_path):
    runner = _runner(tmp_path, "import time\ntime.sleep(30)\n", timeout=0.5)
    output = asyncio.run(runner.run_step(Stage.GOODS_RECEIPT, {}))
    assert not output.success
    assert output.timed_out
    assert "Timeout 500ms exceeded" in output.error


def test_missing_command_reports_launch_failure(tmp_path):
    runner = SubprocessAutomationRunner({Stage.PAYMENT: [str(tmp_path / "missing-binary")]})
    output = asyncio.run(runner.run_step(Stage.PAYMENT, {}))
    assert not output.success
    assert output.error.startswith("Failed to launch automation step")


def test_cancel_stops_only_its_own_run(tmp_path):
    runner = _runner(tmp_path, "import time\ntime.sleep(1.0)\nprint('Material Document: 5000001111')\n")
    first, second = RunControl("first"), RunControl("second")

    async def scenario():
        cancelled = asyncio.create_task(runner.run_step(Stage.GOODS_RECEIPT, {}, first))
        finished = asyncio.create_task(runner.run_step(Stage.GOODS_RECEIPT, {}, second))
        await asyncio.sleep(0.3)
        first.cancel()
        return await cancelled, await finished

    cancelled, finished = asyncio.run(scenario())
    assert cancelled.cancelled
    assert cancelled.error == CANCELLED_TEXT
    assert finished.success
    assert "5000001111" in finished.output


def test_cancelled_run_never_launches(tmp_path):
    control = RunControl("done")
    control.cancel()
    runner = SubprocessAutomationRunner({Stage.PAYMENT: [str(tmp_path / "missing-binary")]})
    output = asyncio.run(runner.run_step(Stage.PAYMENT, {}, control))
    assert output.cancelled


# ----------------------------------------------------------------------
# bulk driver session
# ----------------------------------------------------------------------
def test_session_speaks_json_lines(tmp_path):
    session = SubprocessAutomationSession(_script(tmp_path, "driver.py", DRIVER), timeout=10)

    async def scenario():
        created = await session.create_purchase_order({"MATERIAL": "M-1", "QUANTITY": "7"})
        blocked = await session.create_purchase_order({"MATERIAL": "BLOCKED", "QUANTITY": "1"})
        recovered = await session.recover()
        await session.close()
        return created, blocked, recovered

    created, blocked, recovered = asyncio.run(scenario())
    assert created.success
    assert created.output == "filling form for M-1\nPO Number: 4500000007"
    assert not blocked.success
    assert blocked.error == "Supplier 100 is blocked for posting"
    assert "filling form for BLOCKED" in blocked.output
    assert recovered


def test_late_reply_is_not_taken_for_the_next_request(tmp_path):
    session = SubprocessAutomationSession(_script(tmp_path, "driver.py", DRIVER), timeout=1.0)

    async def scenario():
        slow = await session.create_purchase_order({"MATERIAL": "SLOW", "QUANTITY": "1"})
        following = await session.create_purchase_order({"MATERIAL": "M-2", "QUANTITY": "2"})
        recovered = await session.recover()
        await session.close()
        return slow, following, recovered

    slow, following, recovered = asyncio.run(scenario())
    assert slow.timed_out
    assert "Timeout 1000ms exceeded" in slow.error
    assert following.success
    assert "4500000002" in following.output
    assert "4500000001" not in following.output
    assert recovered


def test_driver_exit_is_reported_and_reset_starts_a_new_driver(tmp_path):
    session = SubprocessAutomationSession(_script(tmp_path, "driver.py", DRIVER), timeout=10)

    async def scenario():
        crashed = await session.create_purchase_order({"MATERIAL": "CRASH", "QUANTITY": "1"})
        await session.reset()
        created = await session.create_purchase_order({"MATERIAL": "M-3", "QUANTITY": "3"})
        await session.close()
        return crashed, created

    crashed, created = asyncio.run(scenario())
    assert not crashed.success
    assert crashed.error == SESSION_CLOSED_TEXT
    assert created.success
    assert "4500000003" in created.output


def test_bulk_job_recovers_from_a_timed_out_record(tmp_path):
    runner = SubprocessAutomationRunner(session_command=_script(tmp_path, "driver.py", DRIVER), timeout=1.0)
    ledger = CsvDocumentLedger(tmp_path / "ledger")
    worker = BulkWorker(runner=runner, ledger=ledger, jobs=JobManager(), prefix_table=DEFAULT_TABLE)
    records = [
        BulkPORecord(material="SLOW", quantity="1"),
        BulkPORecord(material="M-2", quantity="2"),
        BulkPORecord(material="M-3", quantity="3"),
    ]

    async def scenario():
        submission = worker.submit(records, "orders.csv")
        await worker.wait(submission.job_id)
        return worker.jobs.get(submission.job_id)

    job = asyncio.run(scenario())
    assert job.status == "completed"
    assert [r.status for r in job.results] == ["failed", "success", "success"]
    assert [r.result_id for r in job.results] == [None, "4500000002", "4500000003"]
    assert "Timeout 1000ms exceeded" in job.results[0].error
    assert ledger.po_details("4500000002").material == "M-2"
    assert not ledger.exists(Stage.PURCHASE_ORDER, "4500000001")
