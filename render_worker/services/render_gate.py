"""Render gate: decides whether a job's generated assets may be rendered."""

import logging
from typing import Optional

from render_worker.models.job import AuditEntry, Job, JobStatus
from render_worker.models.quality import GateVerdict, QualityReport, SceneScore
from render_worker.models.scene import Recommendation
from render_worker.services.job_store import JobStore
from render_worker.utils.errors import JobStateError

logger = logging.getLogger(__name__)

DEFAULT_MINIMUM_PROJECT_SCORE = 75


def _aggregate_recommendation(report: QualityReport) -> Recommendation:
    if report.rejected_count or report.critical_issue_count:
        return "reject"
    if report.needs_review_count:
        return "needs_review"
    if report.pending_count:
        return "pending"
    return "approve"


def build_quality_report(
    job: Job, minimum_project_score: int = DEFAULT_MINIMUM_PROJECT_SCORE
) -> QualityReport:
    """
    Summarize a job's scene analyses.

    Scenes without an analysis count as pending and do not contribute to
    the overall score. The blocking reasons are computed without honoring
    the job's review override.

    Args:
        job: Job to summarize
        minimum_project_score: Aggregate score a job must reach

    Returns:
        QualityReport for the job
    """
    report = QualityReport(job_id=job.id)

    for index, scene in enumerate(job.scenes):
        analysis = scene.analysis
        if analysis is None:
            report.pending_count += 1
            continue

        score = SceneScore(
            scene_index=index,
            score=analysis.overall_score,
            recommendation=analysis.recommendation,
            critical_issues=analysis.count_issues("critical"),
            major_issues=analysis.count_issues("major"),
            minor_issues=analysis.count_issues("minor"),
        )
        report.scene_scores.append(score)
        report.critical_issue_count += score.critical_issues
        report.major_issue_count += score.major_issues
        report.minor_issue_count += score.minor_issues

        if score.recommendation == "approve":
            report.approved_count += 1
        elif score.recommendation == "needs_review":
            report.needs_review_count += 1
        elif score.recommendation == "reject":
            report.rejected_count += 1
        else:
            report.pending_count += 1

    if report.scene_scores:
        total = sum(s.score for s in report.scene_scores)
        report.overall_score = round(total / len(report.scene_scores))

    report.recommendation = _aggregate_recommendation(report)
    report.blocking_reasons = _blocking_reasons(
        report, review_override=False, minimum_project_score=minimum_project_score
    )
    return report


def _blocking_reasons(
    report: QualityReport, review_override: bool, minimum_project_score: int
) -> list[str]:
    # Every condition is checked; none short-circuits the others.
    reasons: list[str] = []

    if report.rejected_count > 0:
        reasons.append(f"{report.rejected_count} scene(s) rejected and need regeneration")

    if report.needs_review_count > 0 and not review_override:
        reasons.append(
            f"{report.needs_review_count} scene(s) flagged needs_review awaiting human review"
        )

    if report.critical_issue_count > 0:
        reasons.append(f"{report.critical_issue_count} critical issue(s) reported")

    if report.scene_scores and report.overall_score < minimum_project_score:
        reasons.append(
            f"Overall score {report.overall_score} below minimum {minimum_project_score}"
        )

    return reasons


def can_proceed_to_render(
    job: Job,
    minimum_project_score: int = DEFAULT_MINIMUM_PROJECT_SCORE,
    honor_override: bool = True,
) -> GateVerdict:
    """
    Decide whether a job may be rendered.

    A pure function of the job's scene analyses. The only input beyond the
    analyses is the job's review override, which clears the needs_review
    condition and nothing else; pass honor_override=False to see the
    underlying verdict.

    Args:
        job: Job to evaluate
        minimum_project_score: Aggregate score a job must reach
        honor_override: Whether the job's review override is applied

    Returns:
        GateVerdict; allowed only when no blocking reason was collected
    """
    report = build_quality_report(job, minimum_project_score)
    reasons = _blocking_reasons(
        report,
        review_override=honor_override and job.review_override,
        minimum_project_score=minimum_project_score,
    )
    return GateVerdict(allowed=not reasons, blocking_reasons=reasons)


async def _require_job(store: JobStore, job_id: str) -> Job:
    job = await store.get_job(job_id)
    if job is None:
        raise JobStateError(job_id, "missing", "find")
    return job


async def request_render(
    store: JobStore,
    job_id: str,
    minimum_project_score: int = DEFAULT_MINIMUM_PROJECT_SCORE,
) -> GateVerdict:
    """
    Queue a ready job for rendering if the gate allows it.

    Args:
        store: Job store
        job_id: Job to queue
        minimum_project_score: Aggregate score a job must reach

    Returns:
        The gate verdict; the job is queued only when it is allowed

    Raises:
        JobStateError: If the job is missing or not ready
    """
    job = await _require_job(store, job_id)
    if job.status != JobStatus.READY:
        raise JobStateError(job_id, job.status.value, "request render for")

    verdict = can_proceed_to_render(job, minimum_project_score)
    if not verdict.allowed:
        logger.info(f"Render blocked for job {job_id}: {'; '.join(verdict.blocking_reasons)}")
        return verdict

    if not await store.transition(job_id, [JobStatus.READY], JobStatus.RENDER_QUEUED):
        raise JobStateError(job_id, "changed", "request render for")
    logger.info(f"Job {job_id} queued for render")
    return verdict


async def force_render(store: JobStore, job_id: str, actor: str, reason: str) -> Job:
    """
    Queue a ready job for rendering without consulting the gate.

    This is the administrative override; it is recorded in the job's audit
    trail with the actor and reason.

    Raises:
        ValueError: If actor or reason is empty
        JobStateError: If the job is missing or not ready
    """
    if not actor.strip() or not reason.strip():
        raise ValueError("force_render requires an actor and a reason")

    job = await _require_job(store, job_id)
    if job.status != JobStatus.READY:
        raise JobStateError(job_id, job.status.value, "force render for")

    job.progress.audit.append(AuditEntry(action="force_render", actor=actor, reason=reason))
    moved = await store.transition(
        job_id,
        [JobStatus.READY],
        JobStatus.RENDER_QUEUED,
        patch={"progress": job.progress.model_dump(mode="json")},
    )
    if not moved:
        raise JobStateError(job_id, "changed", "force render for")

    logger.warning(f"Job {job_id} force-queued for render by {actor}: {reason}")
    job.status = JobStatus.RENDER_QUEUED
    return job


async def approve_review(
    store: JobStore, job_id: str, actor: str, reason: Optional[str] = None
) -> Job:
    """
    Record a human sign-off on scenes flagged needs_review.

    Raises:
        JobStateError: If the job is missing or already finished
    """
    job = await _require_job(store, job_id)
    if job.status in (JobStatus.COMPLETE, JobStatus.ERROR):
        raise JobStateError(job_id, job.status.value, "approve review for")

    job.review_override = True
    job.progress.audit.append(
        AuditEntry(action="approve_review", actor=actor, reason=reason or "")
    )
    await store.update_job(
        job_id,
        {"review_override": True, "progress": job.progress.model_dump(mode="json")},
    )
    logger.info(f"Review approved for job {job_id} by {actor}")
    return job
