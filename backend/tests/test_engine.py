"""Tests for the workflow interpreter: walking, suspension, retries and failures."""

import asyncio
from datetime import timedelta

import pytest

from actions.base_action import BaseAction, IntegrationAction
from actions.implementations.email_action import SendEmailAction
from core.constants import REASON_RETRY, REASON_SCHEDULED_DELAY, ExecutionStatus, SyncStatus, WorkflowStatus
from core.exceptions import ConflictError, NotFoundError
from workflow.results import Failure, Success
from workflow.state import utcnow


# ─── Test actions ───

class FlakyCrmAction(IntegrationAction):
    """Integration that fails with a retryable error a set number of times."""

    action_id = "flaky_crm"
    integration_id = "crm"

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0

    async def execute(self, config, context):
        self.calls += 1
        if self.calls <= self.failures:
            return Failure("CRM unavailable", retryable=True)
        return self.success(f"crm-{self.calls}", email=config.get("email"))


class SlowAction(BaseAction):
    action_id = "slow"

    async def execute(self, config, context):
        await asyncio.sleep(5)
        return Success()


class CrashingAction(BaseAction):
    action_id = "crash"

    async def execute(self, config, context):
        raise RuntimeError("boom")


class RouterAction(BaseAction):
    """Picks an output beyond the first two."""

    action_id = "router"

    async def execute(self, config, context):
        return Success({"route": 2}, output_index=2)


class CancelDuringRunAction(BaseAction):
    """Cancels its own execution while the turn is still in flight."""

    action_id = "cancel_self"

    def __init__(self, store):
        self.store = store

    async def execute(self, config, context):
        await self.store.mark_cancelled(context.get("system.execution_id"))
        return Success({"ran": True})


def crm_node(node_id="crm"):
    return {"id": node_id, "type": "action", "action_id": "flaky_crm", "config": {"email": "{{submission.email}}"}}


async def _start(service, definition, payload=None):
    workflow = await service.create_workflow("Test", definition, status=WorkflowStatus.ACTIVE)
    execution_id = await service.start_execution(workflow.id, payload or {"id": "sub-1", "email": "ada@example.com"})
    return await service.get_execution(execution_id)


async def _resume_when_due(service, record):
    """Resume at the moment the execution's wait runs out."""
    return await service.scheduler.resume(record.id, now=record.resume_after)


# ─── Walking ───

@pytest.mark.unit
class TestWalk:

    async def test_adult_path(self, service, age_definition):
        record = await _start(service, age_definition, {
            "id": "sub-1", "name": "Ada", "email": "ada@example.com", "age": 25,
        })
        assert record.status == ExecutionStatus.COMPLETED
        assert [h.node_id for h in record.history] == ["start", "check_age", "welcome", "done"]
        assert record.output == {"email": "ada@example.com", "greeting": "Welcome Ada"}
        assert record.context["check_age"] == {"result": True}
        assert record.context["welcome"]["message"] == "Welcome Ada"
        assert record.submission_id == "sub-1"
        assert record.completed_at is not None

    async def test_minor_path(self, service, age_definition):
        record = await _start(service, age_definition, {"id": "sub-2", "email": "kid@example.com", "age": "15"})
        assert record.status == ExecutionStatus.COMPLETED
        assert [h.node_id for h in record.history] == ["start", "check_age", "done"]
        assert record.output == {"email": "kid@example.com", "greeting": ""}

    async def test_system_values_seeded(self, service, build_linear):
        record = await _start(service, build_linear(end_output={"id": "{{system.execution_id}}"}))
        assert record.output == {"id": record.id}
        assert record.context["system"]["submission_id"] == "sub-1"
        assert record.context["submission"]["email"] == "ada@example.com"

    async def test_submission_id_falls_back_to_execution_id(self, service, build_linear):
        record = await _start(service, build_linear(), {"email": "x@example.com"})
        assert record.submission_id == record.id

    async def test_missing_edge_fails(self, service):
        definition = {
            "nodes": [
                {"id": "start", "type": "start"},
                {"id": "check", "type": "condition",
                 "config": {"conditions": [{"field": "vip", "operator": "equals", "value": True}]}},
                {"id": "done", "type": "end"},
            ],
            "connections": [
                {"from": "start", "to": "check"},
                {"from": "check", "to": "done", "output_index": 0},
            ],
        }
        record = await _start(service, definition)
        assert record.status == ExecutionStatus.FAILED
        assert record.error == "No connection leaves node 'check' on output 1"

    async def test_extra_output_falls_back_to_default_edge(self, service, registry, build_linear):
        registry.register("router", RouterAction)
        record = await _start(service, build_linear({"id": "route", "type": "action", "action_id": "router"}))
        assert record.status == ExecutionStatus.COMPLETED
        assert record.context["route"] == {"route": 2}

    async def test_visit_limit(self, make_service, registry):
        service = make_service(max_node_visits=10)
        definition = {
            "nodes": [
                {"id": "start", "type": "start"},
                {"id": "tick", "type": "action", "action_id": "log", "config": {"message": "tick"}},
                {"id": "check", "type": "condition",
                 "config": {"conditions": [{"field": "never_set", "operator": "is_not_null"}]}},
                {"id": "done", "type": "end"},
            ],
            "connections": [
                {"from": "start", "to": "tick"},
                {"from": "tick", "to": "check"},
                {"from": "check", "to": "done", "output_index": 0},
                {"from": "check", "to": "tick", "output_index": 1},
            ],
        }
        record = await _start(service, definition)
        assert record.status == ExecutionStatus.FAILED
        assert record.error == "Node visit limit of 10 exceeded"
        assert len(record.history) == 10

    async def test_output_variable_alias(self, service, build_linear):
        node = {"id": "note", "type": "action", "action_id": "log",
                "config": {"message": "hello", "output_variable": "last_log"}}
        record = await _start(service, build_linear(node, end_output={"msg": "{{last_log.message}}"}))
        assert record.output == {"msg": "hello"}


@pytest.mark.unit
class TestEmailOrLog:
    """Adults are emailed, everyone else is only logged."""

    @pytest.fixture
    def definition(self):
        return {
            "nodes": [
                {"id": "start", "type": "start"},
                {
                    "id": "check_age",
                    "type": "condition",
                    "config": {"conditions": [{"field": "age", "operator": "greater_than", "value": 18}]},
                },
                {
                    "id": "notify",
                    "type": "action",
                    "action_id": "send_email",
                    "config": {"to": "{{submission.email}}", "subject": "Hello {{submission.name}}"},
                },
                {"id": "note", "type": "action", "action_id": "log", "config": {"message": "Under age"}},
                {"id": "done", "type": "end"},
            ],
            "connections": [
                {"from": "start", "to": "check_age"},
                {"from": "check_age", "to": "notify", "output_index": 0},
                {"from": "check_age", "to": "note", "output_index": 1},
                {"from": "notify", "to": "done"},
                {"from": "note", "to": "done"},
            ],
        }

    @pytest.fixture
    def outbox(self, monkeypatch):
        sent = []

        def fake_send(self, host, port, user, password, from_addr, to_addrs, msg, use_tls):
            sent.append((to_addrs, msg["Subject"]))

        monkeypatch.setattr(SendEmailAction, "_send_smtp", fake_send)
        return sent

    async def test_adult_is_emailed(self, service, definition, outbox):
        record = await _start(service, definition, {"id": "sub-1", "name": "Ada", "email": "ada@example.com", "age": 30})
        assert record.status == ExecutionStatus.COMPLETED
        assert [h.node_id for h in record.history] == ["start", "check_age", "notify", "done"]
        assert outbox == [(["ada@example.com"], "Hello Ada")]
        assert record.context["notify"]["recipients"] == ["ada@example.com"]

    async def test_minor_is_logged_only(self, service, definition, outbox):
        record = await _start(service, definition, {"id": "sub-2", "name": "Kit", "email": "kit@example.com", "age": 12})
        assert record.status == ExecutionStatus.COMPLETED
        assert [h.node_id for h in record.history] == ["start", "check_age", "note", "done"]
        assert outbox == []
        assert record.context["note"]["message"] == "Under age"


# ─── Delays and resume ───

@pytest.mark.unit
class TestDelays:

    async def test_short_delay_runs_inline(self, service, build_linear, fake_sleep):
        record = await _start(service, build_linear({"id": "wait", "type": "delay", "config": {"duration": 5}}))
        assert record.status == ExecutionStatus.COMPLETED
        assert fake_sleep.calls == [5.0]
        assert record.context["wait"] == {"delayed_seconds": 5.0}

    async def test_long_delay_suspends(self, service, build_linear, fake_sleep):
        before = utcnow()
        record = await _start(service, build_linear(
            {"id": "wait", "type": "delay", "config": {"duration": 2, "unit": "hours"}}
        ))
        assert record.status == ExecutionStatus.WAITING
        assert record.waiting_reason == REASON_SCHEDULED_DELAY
        assert record.current_node_id == "wait"
        assert record.resume_after >= before + timedelta(hours=2)
        assert fake_sleep.calls == []

    async def test_threshold_is_inclusive(self, service, build_linear, fake_sleep):
        record = await _start(service, build_linear({"id": "wait", "type": "delay", "config": {"duration": 30}}))
        assert record.status == ExecutionStatus.COMPLETED
        assert fake_sleep.calls == [30.0]

    async def test_resume_completes_delay_node(self, service, build_linear):
        record = await _start(service, build_linear(
            {"id": "wait", "type": "delay", "config": {"duration": 1, "unit": "minutes"}},
            end_output={"waited": "{{wait.waited_seconds}}"},
        ))
        resumed = await service.resume(record.id, force=True)
        assert resumed.status == ExecutionStatus.COMPLETED
        assert resumed.output == {"waited": 60.0}
        assert [h.node_id for h in resumed.history] == ["start", "wait", "wait", "done"]
        assert resumed.resume_after is None

    async def test_resume_before_due_is_rejected(self, service, build_linear):
        record = await _start(service, build_linear(
            {"id": "wait", "type": "delay", "config": {"duration": 1, "unit": "hours"}}
        ))
        with pytest.raises(ConflictError):
            await service.resume(record.id)

    async def test_delay_duration_from_template(self, service, build_linear, fake_sleep):
        record = await _start(
            service,
            build_linear({"id": "wait", "type": "delay", "config": {"duration": "{{submission.pause}}"}}),
            {"id": "sub-1", "pause": 3},
        )
        assert record.status == ExecutionStatus.COMPLETED
        assert fake_sleep.calls == [3.0]

    async def test_unknown_delay_unit_fails(self, service, build_linear):
        record = await _start(service, build_linear(
            {"id": "wait", "type": "delay", "config": {"duration": 1, "unit": "fortnights"}}
        ))
        assert record.status == ExecutionStatus.FAILED
        assert "fortnights" in record.error


# ─── Retries and the sync ledger ───

@pytest.mark.unit
class TestRetries:

    async def test_retry_then_success(self, service, registry, build_linear):
        crm = FlakyCrmAction(failures=2)
        registry.register("flaky_crm", crm)
        record = await _start(service, build_linear(crm_node()))

        assert record.status == ExecutionStatus.WAITING
        assert record.waiting_reason == REASON_RETRY
        assert record.attempt_counters == {"crm": 1}
        assert record.history[-1].result == {"kind": "waiting", "resume_after": 60.0, "reason": "retry"}

        record = await _resume_when_due(service, record)
        assert record.attempt_counters == {"crm": 2}
        assert record.history[-1].result["resume_after"] == 120.0

        record = await _resume_when_due(service, record)
        assert record.status == ExecutionStatus.COMPLETED
        assert record.attempt_counters == {}
        assert record.context["crm"]["external_id"] == "crm-3"
        assert crm.calls == 3

        history = await service.sync_history("sub-1")
        assert [(r.status, r.attempt_number) for r in history] == [
            (SyncStatus.FAILED, 1),
            (SyncStatus.FAILED, 2),
            (SyncStatus.SUCCESS, 3),
        ]
        assert history[-1].external_id == "crm-3"

    async def test_retries_exhausted(self, service, registry, build_linear):
        crm = FlakyCrmAction(failures=99)
        registry.register("flaky_crm", crm)
        record = await _start(service, build_linear(crm_node()))
        for _ in range(3):
            record = await _resume_when_due(service, record)

        assert record.status == ExecutionStatus.FAILED
        assert record.error == "Node 'crm' failed after 3 retries: CRM unavailable"
        assert crm.calls == 4
        stats = await service.sync_stats(integration_id="crm")
        assert stats["failed"] == 4
        assert stats["success"] == 0

    async def test_workflow_settings_override_policy(self, service, registry, build_linear):
        registry.register("flaky_crm", FlakyCrmAction(failures=99))
        definition = build_linear(crm_node())
        definition["settings"] = {"max_retries": 1, "retry_delay_seconds": 5}
        record = await _start(service, definition)
        assert record.history[-1].result["resume_after"] == 5.0

        record = await _resume_when_due(service, record)
        assert record.status == ExecutionStatus.FAILED
        assert "after 1 retries" in record.error

    async def test_retry_after_accepted_delivery_is_skipped(self, service, registry, build_linear):
        crm = FlakyCrmAction(failures=1)
        registry.register("flaky_crm", crm)
        record = await _start(service, build_linear(crm_node()))
        assert record.waiting_reason == REASON_RETRY

        # The CRM accepted the first call after all
        await service.ledger.record("sub-1", "crm", SyncStatus.SUCCESS, external_id="crm-42")

        record = await _resume_when_due(service, record)
        assert record.status == ExecutionStatus.COMPLETED
        assert crm.calls == 1
        assert record.context["crm"] == {"external_id": "crm-42", "duplicate": True}
        latest = await service.ledger.latest_status("sub-1", "crm")
        assert latest.status == SyncStatus.SKIPPED
        assert record.attempt_counters == {}

    async def test_retry_after_failed_delivery_calls_again(self, service, registry, build_linear):
        crm = FlakyCrmAction(failures=1)
        registry.register("flaky_crm", crm)
        record = await _start(service, build_linear(crm_node()))
        record = await _resume_when_due(service, record)
        assert record.status == ExecutionStatus.COMPLETED
        assert crm.calls == 2
        assert "duplicate" not in record.context["crm"]

    async def test_distinct_nodes_for_same_integration_both_deliver(self, service, registry, build_linear):
        crm = FlakyCrmAction()
        registry.register("flaky_crm", crm)
        record = await _start(service, build_linear(crm_node("crm_a"), crm_node("crm_b")))
        assert record.status == ExecutionStatus.COMPLETED
        assert crm.calls == 2
        assert record.context["crm_a"]["external_id"] == "crm-1"
        assert record.context["crm_b"]["external_id"] == "crm-2"

    async def test_earlier_execution_does_not_suppress_first_dispatch(self, service, registry, build_linear):
        crm = FlakyCrmAction()
        registry.register("flaky_crm", crm)
        await service.ledger.record("sub-1", "crm", SyncStatus.SUCCESS, external_id="crm-42")

        record = await _start(service, build_linear(crm_node()))
        assert record.status == ExecutionStatus.COMPLETED
        assert crm.calls == 1
        assert record.context["crm"]["external_id"] == "crm-1"
        latest = await service.ledger.latest_status("sub-1", "crm")
        assert latest.status == SyncStatus.SUCCESS
        assert latest.external_id == "crm-1"

    async def test_force_cannot_cut_a_retry_wait_short(self, service, registry, build_linear):
        crm = FlakyCrmAction(failures=1)
        registry.register("flaky_crm", crm)
        record = await _start(service, build_linear(crm_node()))

        with pytest.raises(ConflictError):
            await service.resume(record.id, force=True)
        assert crm.calls == 1
        unchanged = await service.get_execution(record.id)
        assert unchanged.status == ExecutionStatus.WAITING
        assert unchanged.waiting_reason == REASON_RETRY

    async def test_non_retryable_action_fails_immediately(self, service, registry, build_linear):
        registry.register("crash", CrashingAction)
        record = await _start(service, build_linear({"id": "bad", "type": "action", "action_id": "crash"}))
        assert record.status == ExecutionStatus.FAILED
        assert record.error == "boom"
        assert record.attempt_counters == {}


# ─── Failures, timeouts and cancellation ───

@pytest.mark.unit
class TestFailureModes:

    async def test_node_timeout(self, make_service, registry, build_linear):
        service = make_service(node_timeout=0.05)
        registry.register("slow", SlowAction)
        record = await _start(service, build_linear({"id": "slow_node", "type": "action", "action_id": "slow"}))
        assert record.status == ExecutionStatus.FAILED
        assert record.error == "Node 'slow_node' timed out after 0.05s"

    async def test_cancel_waiting_execution(self, service, build_linear):
        record = await _start(service, build_linear(
            {"id": "wait", "type": "delay", "config": {"duration": 1, "unit": "hours"}}
        ))
        cancelled = await service.cancel(record.id)
        assert cancelled.status == ExecutionStatus.CANCELLED
        assert cancelled.resume_after is None

        with pytest.raises(ConflictError):
            await service.cancel(record.id)
        with pytest.raises(ConflictError):
            await service.resume(record.id, force=True)

        # A turn on a cancelled execution is a no-op
        again = await service.run_execution(record.id)
        assert again.status == ExecutionStatus.CANCELLED
        assert len(again.history) == len(cancelled.history)

    async def test_cancellation_during_turn_wins(self, service, registry, build_linear):
        registry.register("cancel_self", CancelDuringRunAction(service.executions))
        record = await _start(service, build_linear({"id": "c", "type": "action", "action_id": "cancel_self"}))
        assert record.status == ExecutionStatus.CANCELLED
        assert record.output == {}

    async def test_cancel_finished_execution_conflicts(self, service, build_linear):
        record = await _start(service, build_linear())
        with pytest.raises(ConflictError):
            await service.cancel(record.id)

    async def test_completed_execution_turn_is_noop(self, service, build_linear):
        record = await _start(service, build_linear())
        again = await service.run_execution(record.id)
        assert again.status == ExecutionStatus.COMPLETED
        assert len(again.history) == len(record.history)

    async def test_unknown_execution(self, service):
        with pytest.raises(NotFoundError):
            await service.run_execution("missing")
