"""
Render worker command line.

Usage:
    render-worker run                          # Run the worker until SIGINT/SIGTERM
    render-worker tick                         # Claim and drive at most one job
    render-worker sweep                        # Run one stall check
    render-worker recover                      # Run startup recovery only
    render-worker gate JOB_ID                  # Show the render gate verdict
    render-worker approve-review JOB_ID --actor NAME
    render-worker request-render JOB_ID        # Queue a ready job if the gate allows
    render-worker force-render JOB_ID --actor NAME --reason TEXT
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

from render_worker.config import get_settings
from render_worker.utils.errors import RenderWorkerError

logger = logging.getLogger(__name__)


def cmd_run(args) -> int:
    from render_worker.worker import create_worker

    asyncio.run(create_worker().run())
    return 0


def cmd_tick(args) -> int:
    from render_worker.services.pipeline import create_job_pipeline

    job = asyncio.run(create_job_pipeline().tick())
    if job is None:
        print("No claimable job")
    else:
        print(f"Job {job.id}: {job.status.value}")
    return 0


def cmd_sweep(args) -> int:
    from render_worker.services.job_store import create_job_store
    from render_worker.services.stall_detector import create_stall_detector

    reset = asyncio.run(create_stall_detector(create_job_store()).sweep())
    print(f"Reset {len(reset)} stalled job(s)")
    for job_id in reset:
        print(f"   - {job_id}")
    return 0


def cmd_recover(args) -> int:
    from render_worker.services.job_store import create_job_store
    from render_worker.services.pipeline import create_job_pipeline
    from render_worker.services.recovery import create_startup_recovery

    store = create_job_store()
    recovery = create_startup_recovery(store, create_job_pipeline(store))
    summary = asyncio.run(recovery.recover())
    print(f"Resumed:   {len(summary.resumed)}")
    print(f"Finalized: {len(summary.finalized)}")
    print(f"Re-queued: {len(summary.requeued)}")
    print(f"Failed:    {len(summary.failed)}")
    return 1 if summary.failed else 0


def cmd_gate(args) -> int:
    from render_worker.services.job_store import create_job_store
    from render_worker.services.render_gate import build_quality_report, can_proceed_to_render

    settings = get_settings()
    job = asyncio.run(create_job_store().get_job(args.job_id))
    if job is None:
        print(f"Job {args.job_id} not found")
        return 1

    report = build_quality_report(job, settings.minimum_project_score)
    verdict = can_proceed_to_render(job, settings.minimum_project_score)
    print(f"Job {job.id} ({job.status.value})")
    print(f"   Overall score: {report.overall_score}")
    print(f"   Recommendation: {report.recommendation}")
    print(
        f"   Scenes: {report.approved_count} approved, {report.needs_review_count} needs_review, "
        f"{report.rejected_count} rejected, {report.pending_count} pending"
    )
    if job.review_override:
        print("   Review override: yes")
    print(f"   Render allowed: {'yes' if verdict.allowed else 'no'}")
    for reason in verdict.blocking_reasons:
        print(f"   - {reason}")
    return 0 if verdict.allowed else 2


def cmd_approve_review(args) -> int:
    from render_worker.services.job_store import create_job_store
    from render_worker.services.render_gate import approve_review

    job = asyncio.run(approve_review(create_job_store(), args.job_id, args.actor, args.reason))
    print(f"Review approved for job {job.id}")
    return 0


def cmd_request_render(args) -> int:
    from render_worker.services.job_store import create_job_store
    from render_worker.services.render_gate import request_render

    settings = get_settings()
    verdict = asyncio.run(
        request_render(create_job_store(), args.job_id, settings.minimum_project_score)
    )
    if verdict.allowed:
        print(f"Job {args.job_id} queued for render")
        return 0
    print(f"Render blocked for job {args.job_id}:")
    for reason in verdict.blocking_reasons:
        print(f"   - {reason}")
    return 2


def cmd_force_render(args) -> int:
    from render_worker.services.job_store import create_job_store
    from render_worker.services.render_gate import force_render

    job = asyncio.run(force_render(create_job_store(), args.job_id, args.actor, args.reason))
    print(f"Job {job.id} force-queued for render by {args.actor}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Resumable video render worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run                                   Start the worker
  %(prog)s gate JOB_ID                           Show why a job can or cannot render
  %(prog)s force-render JOB_ID --actor ops --reason "approved by editor"
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser("run", help="Run the worker")
    run_parser.set_defaults(func=cmd_run)

    tick_parser = subparsers.add_parser("tick", help="Claim and drive at most one job")
    tick_parser.set_defaults(func=cmd_tick)

    sweep_parser = subparsers.add_parser("sweep", help="Run one stall check")
    sweep_parser.set_defaults(func=cmd_sweep)

    recover_parser = subparsers.add_parser("recover", help="Recover interrupted renders")
    recover_parser.set_defaults(func=cmd_recover)

    gate_parser = subparsers.add_parser("gate", help="Show the render gate verdict")
    gate_parser.add_argument("job_id")
    gate_parser.set_defaults(func=cmd_gate)

    approve_parser = subparsers.add_parser(
        "approve-review", help="Sign off scenes flagged needs_review"
    )
    approve_parser.add_argument("job_id")
    approve_parser.add_argument("--actor", required=True, help="Who approved")
    approve_parser.add_argument("--reason", help="Optional note")
    approve_parser.set_defaults(func=cmd_approve_review)

    request_parser = subparsers.add_parser(
        "request-render", help="Queue a ready job if the gate allows it"
    )
    request_parser.add_argument("job_id")
    request_parser.set_defaults(func=cmd_request_render)

    force_parser = subparsers.add_parser(
        "force-render", help="Queue a ready job without consulting the gate"
    )
    force_parser.add_argument("job_id")
    force_parser.add_argument("--actor", required=True, help="Who is overriding the gate")
    force_parser.add_argument("--reason", required=True, help="Why the gate is overridden")
    force_parser.set_defaults(func=cmd_force_render)

    return parser


def main(argv=None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except (RenderWorkerError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
