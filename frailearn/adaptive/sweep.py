"""
Periodic sweeps.

The core exposes ticks only; something outside (the `frailearn sweep watch`
command, cron, a job runner) decides when to call them.

- Remedial sweep: remedial check plus deferred curriculum generation for a
  batch of learners, each learner isolated from the others' failures
- Retention sweep: housekeeping of old addressed mistakes and surplus
  failed assessments
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from config import get_settings
from frailearn.adaptive.models import RetentionReport, SweepReport
from frailearn.adaptive.remedial_trigger import RemedialTrigger
from frailearn.adaptive.section_gate import SectionGate
from frailearn.db.database import session_scope
from frailearn.db.models import GateAssessment, Mistake
from frailearn.db.queries import active_learner_ids
from frailearn.utils.time import utcnow


def run_remedial_sweep(
    learner_ids: Iterable[str],
    trigger: RemedialTrigger,
    gate: SectionGate | None = None,
) -> SweepReport:
    """
    One sweep tick over the given learners.

    A failure for one learner is logged and recorded; the batch continues.
    Re-running the tick is safe: remedial checks and generation retries are
    both idempotent.
    """
    report = SweepReport()
    for learner_id in learner_ids:
        try:
            report.remedial_chapter_ids[learner_id] = trigger.check(learner_id)
            if gate is not None:
                report.generated_chapter_ids[learner_id] = gate.retry_pending_generation(
                    learner_id
                )
        except Exception as exc:  # One learner must not abort the batch
            logger.exception("Sweep failed for learner {}", learner_id)
            report.failures[learner_id] = str(exc)
            continue
        report.processed.append(learner_id)

    logger.info(
        "Remedial sweep: {} processed, {} remedial chapters, {} generated chapters, {} failures",
        len(report.processed),
        report.total_remedial,
        report.total_generated,
        len(report.failures),
    )
    return report


def recently_active_learners(
    session_factory: sessionmaker | None = None,
    now: datetime | None = None,
    days: int | None = None,
) -> list[str]:
    """Learners active within the last `days` days (default from settings)."""
    days = get_settings().active_learner_days if days is None else days
    since = (now or utcnow()) - timedelta(days=days)
    with session_scope(session_factory) as session:
        return active_learner_ids(session, since)


def run_retention_sweep(
    session_factory: sessionmaker | None = None,
    now: datetime | None = None,
    retention_days: int | None = None,
    keep_latest: int | None = None,
) -> RetentionReport:
    """
    Delete addressed mistakes past retention and all but the latest failed
    assessments of each learner. Unaddressed mistakes and passed assessments
    are never touched.
    """
    settings = get_settings()
    retention_days = settings.mistake_retention_days if retention_days is None else retention_days
    keep_latest = settings.assessment_keep_latest if keep_latest is None else keep_latest
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    report = RetentionReport()

    with session_scope(session_factory) as session:
        result = session.execute(
            delete(Mistake).where(Mistake.is_addressed.is_(True), Mistake.created_at < cutoff)
        )
        report.mistakes_deleted = result.rowcount or 0

        failed = session.execute(
            select(GateAssessment.id, GateAssessment.learner_id)
            .where(
                GateAssessment.passed.is_(False),
                GateAssessment.completed_at.is_not(None),
            )
            .order_by(GateAssessment.learner_id, GateAssessment.completed_at.desc())
        ).all()

        seen: dict[str, int] = {}
        surplus: list[str] = []
        for assessment_id, learner_id in failed:
            seen[learner_id] = seen.get(learner_id, 0) + 1
            if seen[learner_id] > keep_latest:
                surplus.append(assessment_id)

        if surplus:
            session.execute(delete(GateAssessment).where(GateAssessment.id.in_(surplus)))
        report.assessments_deleted = len(surplus)

    logger.info(
        "Retention sweep: {} mistakes, {} assessments deleted",
        report.mistakes_deleted,
        report.assessments_deleted,
    )
    return report
