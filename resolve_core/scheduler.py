"""
Timed-Transition Scheduler

Periodic sweep over active workflow instances. When an instance has sat in
its stage longer than the stage's duration, the first TIME_BASED transition
of that stage is taken; stages without one escalate the complaint instead
(once per complaint).
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any

from .complaints import ComplaintStore
from .storage import utc_now
from .workflow_engine import WorkflowEngine
from .workflows import InstanceStatus, WorkflowInstance

logger = logging.getLogger("resolve.scheduler")


@dataclass
class SweepReport:
    """What one sweep did"""
    started_at: datetime
    finished_at: Optional[datetime] = None
    scanned: int = 0
    advanced: int = 0
    escalated: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'startedAt': self.started_at.isoformat(),
            'finishedAt': self.finished_at.isoformat() if self.finished_at else None,
            'scanned': self.scanned,
            'advanced': self.advanced,
            'escalated': self.escalated,
            'failed': self.failed,
            'errors': self.errors,
        }


class TimedTransitionScheduler:
    """Runs timed transitions and SLA escalations, on demand or on a daemon thread"""

    def __init__(self, engine: WorkflowEngine, complaints: ComplaintStore, interval_seconds: int = 300):
        self.engine = engine
        self.complaints = complaints
        self.interval_seconds = max(1, interval_seconds)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._sweep_lock = threading.Lock()
        self.last_report: Optional[SweepReport] = None

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Check every active, unfinished instance against its stage deadline.

        A failure on one instance is logged and counted; the sweep carries on
        with the rest.
        """
        now = now or utc_now()
        report = SweepReport(started_at=now)
        with self._sweep_lock:
            instances = self.engine.list_instances(status=InstanceStatus.ACTIVE, is_completed=False)
            for instance in instances:
                report.scanned += 1
                try:
                    outcome = self._process(instance, now)
                except Exception as e:
                    logger.exception("Timed transition failed for instance %s", instance.id)
                    report.failed += 1
                    report.errors.append({'instanceId': instance.id, 'error': str(e)})
                    continue
                if outcome == "advanced":
                    report.advanced += 1
                elif outcome == "escalated":
                    report.escalated += 1
        report.finished_at = utc_now()
        self.last_report = report
        return report

    def run_once(self, now: Optional[datetime] = None) -> SweepReport:
        """Run a sweep and log its summary"""
        report = self.sweep(now)
        logger.info(
            "Timed transition sweep: %d scanned, %d advanced, %d escalated, %d failed",
            report.scanned, report.advanced, report.escalated, report.failed,
            extra={'action': 'scheduler_sweep', 'extra_data': report.to_dict()}
        )
        return report

    def _process(self, instance: WorkflowInstance, now: datetime) -> Optional[str]:
        definition = self.engine.definitions.get(instance.workflow_id)
        stage = definition.stage_by_id(instance.current_stage_id)
        entry = instance.open_entry()
        if stage is None or entry is None:
            return None

        deadline = entry.entered_at + stage.duration
        if now <= deadline:
            return None

        transition = stage.time_based_transition()
        if transition:
            moved = self.engine.advance(
                instance.id, transition.target_stage_id, actor_id=None, now=now,
                from_stage_id=stage.id,
            )
            return "advanced" if moved else None

        complaint = self.complaints.get(instance.complaint_id)
        if complaint is None or complaint.escalated_at is not None:
            return None
        self.engine.auto_escalate(instance.id, f"SLA exceeded for stage {stage.name}", now=now)
        return "escalated"

    # Background thread

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="resolve-scheduler", daemon=True)
        self._thread.start()
        logger.info("Timed transition scheduler started (every %ss)", self.interval_seconds)

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Timed transition scheduler stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Timed transition sweep crashed")
            self._stop.wait(self.interval_seconds)
