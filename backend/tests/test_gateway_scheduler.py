# ruff: noqa: INP001, S101

from __future__ import annotations

from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

import pytest

from clawhuddle.core.config import settings
from clawhuddle.services.gateways import scheduler as scheduler_module
from clawhuddle.services.gateways.worker import (
    run_gateway_task_worker_once,
    run_reconcile_gateway_statuses,
)


@dataclass
class _Job:
    id: str


@dataclass
class _FakeScheduler:
    existing: list[_Job]
    cancelled: list[str] = field(default_factory=list)
    scheduled: list[dict[str, Any]] = field(default_factory=list)

    def get_jobs(self) -> list[_Job]:
        return list(self.existing)

    def cancel(self, job: _Job) -> None:
        self.cancelled.append(job.id)

    def schedule(self, scheduled_time: object, **kwargs: Any) -> None:
        self.scheduled.append(kwargs)


class _FakeRedis:
    def __init__(self, failures: int) -> None:
        self.failures = failures

    def ping(self) -> bool:
        if self.failures:
            self.failures -= 1
            raise ConnectionError("redis not ready")
        return True


def _patch(monkeypatch: pytest.MonkeyPatch, fake_redis: _FakeRedis, fake: _FakeScheduler) -> list[float]:
    sleeps: list[float] = []
    monkeypatch.setattr(scheduler_module, "Redis", SimpleNamespace(from_url=lambda _url: fake_redis))
    monkeypatch.setattr(scheduler_module, "Scheduler", lambda **_kwargs: fake)
    monkeypatch.setattr(scheduler_module.time, "sleep", sleeps.append)
    return sleeps


def test_bootstrap_replaces_reconcile_and_drain_jobs(monkeypatch: pytest.MonkeyPatch) -> None:
    schedule_id = settings.gateway_reconcile_schedule_id
    fake = _FakeScheduler(existing=[_Job(schedule_id), _Job("unrelated")])
    sleeps = _patch(monkeypatch, _FakeRedis(failures=1), fake)

    scheduler_module.bootstrap_gateway_reconcile_schedule(30, retry_sleep_seconds=0.5)

    assert sleeps == [0.5]
    assert fake.cancelled == [schedule_id]
    assert [(job["id"], job["func"], job["interval"]) for job in fake.scheduled] == [
        (schedule_id, run_reconcile_gateway_statuses, 30),
        (f"{schedule_id}-tasks", run_gateway_task_worker_once, 30),
    ]
    assert {job["queue_name"] for job in fake.scheduled} == {settings.gateway_task_queue_name}


def test_bootstrap_gives_up_after_max_attempts(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeScheduler(existing=[])
    sleeps = _patch(monkeypatch, _FakeRedis(failures=10), fake)

    with pytest.raises(RuntimeError, match="Failed to bootstrap"):
        scheduler_module.bootstrap_gateway_reconcile_schedule(max_attempts=3, retry_sleep_seconds=1.0)

    assert sleeps == [1.0, 2.0]
    assert fake.scheduled == []
