"""CLI entry point for the jobstream client."""

import argparse
import asyncio
import logging
import mimetypes
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

from jobstream.backends import get_backend
from jobstream.backends.memory import MemoryBackend
from jobstream.core.config import Settings
from jobstream.core.schemas import POSTED_WITHIN_DAYS, SALARY_BUCKETS, FilterSpec
from jobstream.core.store import init_store
from jobstream.pipeline.resumes import file_type_label, format_file_size
from jobstream.pipeline.session import ClientSession

_LIST_PROFILE_FIELDS = ("skills", "preferred_job_types", "preferred_locations")


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="jobstream - browse, save and apply to jobs from the terminal",
    )
    subparsers = parser.add_subparsers(dest="command")

    # --- jobs (default) ---
    jobs_parser = subparsers.add_parser("jobs", help="List jobs matching filters")
    _add_common(jobs_parser)
    jobs_parser.add_argument("--search", default="", help="Match title, company, location or tag")
    jobs_parser.add_argument("--type", dest="filter_type", default="all", help="Quick type filter")
    jobs_parser.add_argument(
        "--experience", action="append", default=[], help="Experience level (repeatable)",
    )
    jobs_parser.add_argument(
        "--job-type", action="append", default=[], help="Exact job type (repeatable)",
    )
    jobs_parser.add_argument("--salary", choices=list(SALARY_BUCKETS), help="Salary bucket")
    jobs_parser.add_argument(
        "--posted-within", choices=list(POSTED_WITHIN_DAYS), default="any",
        help="Only jobs posted within this window",
    )
    jobs_parser.add_argument("--remote-only", action="store_true", help="Only remote jobs")
    jobs_parser.add_argument(
        "--location", action="append", default=[], help="Location substring (repeatable)",
    )
    jobs_parser.add_argument("--refresh", action="store_true", help="Bypass the listing cache")

    # --- saved jobs ---
    saved_parser = subparsers.add_parser("saved", help="List saved jobs")
    _add_common(saved_parser)

    save_parser = subparsers.add_parser("save", help="Save or unsave a job")
    _add_common(save_parser)
    save_parser.add_argument("job_id")

    # --- applications ---
    apply_parser = subparsers.add_parser("apply", help="Apply to a job")
    _add_common(apply_parser)
    apply_parser.add_argument("job_id")
    apply_parser.add_argument("--cover-letter", default=None)
    apply_parser.add_argument("--resume-url", default=None)

    apps_parser = subparsers.add_parser("applications", help="List applications")
    _add_common(apps_parser)
    apps_parser.add_argument("--status", default="all", help="Filter by status")

    withdraw_parser = subparsers.add_parser("withdraw", help="Withdraw an application")
    _add_common(withdraw_parser)
    withdraw_parser.add_argument("application_id")

    # --- notifications ---
    notif_parser = subparsers.add_parser("notifications", help="Show notifications")
    _add_common(notif_parser)
    group = notif_parser.add_mutually_exclusive_group()
    group.add_argument("--mark-all-read", action="store_true")
    group.add_argument("--clear", action="store_true")

    watch_parser = subparsers.add_parser("watch", help="Listen for newly posted jobs")
    _add_common(watch_parser)
    watch_parser.add_argument("--seconds", type=float, default=60.0)

    # --- settings ---
    settings_parser = subparsers.add_parser("settings", help="Show or change settings")
    _add_common(settings_parser)
    settings_parser.add_argument(
        "--set", dest="assignments", action="append", default=[], metavar="KEY=VALUE",
    )
    settings_parser.add_argument("--reset", action="store_true")

    # --- profile and resumes ---
    profile_parser = subparsers.add_parser("profile", help="Show or change the profile")
    _add_common(profile_parser)
    profile_parser.add_argument(
        "--set", dest="assignments", action="append", default=[], metavar="KEY=VALUE",
        help="List fields take comma-separated values",
    )

    resumes_parser = subparsers.add_parser("resumes", help="List and manage resumes")
    _add_common(resumes_parser)
    resume_action = resumes_parser.add_mutually_exclusive_group()
    resume_action.add_argument("--upload", metavar="FILE", help="Upload a PDF or Word file")
    resume_action.add_argument("--delete", metavar="PATH", help="Delete a stored resume")
    resume_action.add_argument("--set-primary", metavar="URL", help="Make a resume the primary one")
    resumes_parser.add_argument(
        "--primary", action="store_true", help="With --upload: make it the primary resume",
    )

    # --- post (memory backend only) ---
    post_parser = subparsers.add_parser("post", help="Publish a job to the local memory store")
    _add_common(post_parser)
    post_parser.add_argument("title")
    post_parser.add_argument("--company", default="")
    post_parser.add_argument("--location", default="Remote")
    post_parser.add_argument("--job-type", default="Full-time")
    post_parser.add_argument("--salary-min", type=int, default=None)
    post_parser.add_argument("--salary-max", type=int, default=None)
    post_parser.add_argument("--remote", action="store_true")

    # --- top-level flags: bare invocation lists jobs ---
    parser.add_argument("--config", default="config/settings.yaml", help=argparse.SUPPRESS)
    parser.add_argument("--verbose", "-v", action="store_true", help=argparse.SUPPRESS)

    args = parser.parse_args(argv)

    # Default to listing jobs when no subcommand given
    if args.command is None:
        args = parser.parse_args(["jobs", *(argv if argv is not None else sys.argv[1:])])

    return args


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def parse_assignment(text: str) -> tuple[str, object]:
    """Parse KEY=VALUE, turning true/false into booleans."""
    if "=" not in text:
        msg = f"Expected KEY=VALUE, got '{text}'"
        raise ValueError(msg)
    key, value = text.split("=", 1)
    lowered = value.strip().lower()
    if lowered in ("true", "false"):
        return key.strip(), lowered == "true"
    return key.strip(), value.strip()


async def cmd_jobs(session: ClientSession, args: argparse.Namespace) -> int:
    result = await (session.feed.refetch() if args.refresh else session.feed.fetch())
    session.dashboard.search_term = args.search
    session.dashboard.filter_type = args.filter_type
    session.dashboard.set_filters(FilterSpec(
        experience_levels=args.experience,
        job_types=args.job_type,
        salary_range=args.salary,
        posted_within=args.posted_within,
        remote_only=args.remote_only,
        locations=args.location,
    ))
    jobs = session.dashboard.visible(result.jobs)

    if result.error:
        print(f"Warning: {result.error} (showing {len(result.jobs)} cached jobs)")
    active = session.dashboard.active_filter_count
    print(f"{len(jobs)} of {len(result.jobs)} jobs"
          + (f" ({active} active filters)" if active else ""))
    for job in jobs:
        marks = []
        if session.saved.is_saved(job.id):
            marks.append("saved")
        if session.applications.has_applied(job.id):
            marks.append("applied")
        suffix = f" [{', '.join(marks)}]" if marks else ""
        print(f"  {job.logo} {job.id}: {job.title} at {job.company} - {job.location} | "
              f"{job.type} | {job.salary} | {job.posted}{suffix}")
    return 0


async def cmd_saved(session: ClientSession, args: argparse.Namespace) -> int:
    if session.saved.error:
        print(f"Error: {session.saved.error}", file=sys.stderr)
        return 1
    details = session.saved.with_details(session.feed.jobs)
    print(f"{session.saved.saved_count} saved jobs")
    for item, job in details:
        print(f"  {job.id}: {job.title} at {job.company} (saved {item.created_at:%Y-%m-%d})")
    return 0


async def cmd_save(session: ClientSession, args: argparse.Namespace) -> int:
    result = await session.saved.toggle(args.job_id)
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    state = "Saved" if result.data["saved"] else "Removed"
    print(f"{state} job {args.job_id}")
    return 0


async def cmd_apply(session: ClientSession, args: argparse.Namespace) -> int:
    result = await session.applications.apply(args.job_id, args.cover_letter, args.resume_url)
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    print(f"Application submitted: {result.data.id}")
    return 0


async def cmd_applications(session: ClientSession, args: argparse.Namespace) -> int:
    try:
        apps = session.applications.by_status(args.status)
    except ValueError:
        print(f"Error: unknown status '{args.status}'", file=sys.stderr)
        return 1
    counts = session.applications.counts()
    print(", ".join(f"{k}: {v}" for k, v in counts.items()))
    for app in apps:
        title = (app.job or {}).get("title", app.job_id)
        print(f"  {app.id}: {title} - {app.status.value} (applied {app.applied_at:%Y-%m-%d})")
    return 0


async def cmd_withdraw(session: ClientSession, args: argparse.Namespace) -> int:
    result = await session.applications.withdraw(args.application_id)
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    print(f"Withdrew application {args.application_id}")
    return 0


async def cmd_notifications(session: ClientSession, args: argparse.Namespace) -> int:
    if args.mark_all_read:
        session.ledger.mark_all_as_read()
    elif args.clear:
        session.ledger.clear_all()
    print(f"{session.ledger.unread_count} unread")
    for n in session.ledger.notifications:
        flag = " " if n.read else "*"
        print(f" {flag} {n.timestamp:%Y-%m-%d %H:%M} {n.title}: {n.message} ({n.job_title})")
    return 0


async def cmd_watch(session: ClientSession, args: argparse.Namespace) -> int:
    before = session.ledger.unread_count
    print(f"Listening for new jobs for {args.seconds:.0f}s...")
    await asyncio.sleep(args.seconds)
    new = session.ledger.unread_count - before
    print(f"{max(new, 0)} new notifications")
    return await cmd_notifications(session, argparse.Namespace(mark_all_read=False, clear=False))


async def cmd_settings(session: ClientSession, args: argparse.Namespace) -> int:
    if args.reset:
        await session.settings.reset()
    if args.assignments:
        try:
            changes = dict(parse_assignment(a) for a in args.assignments)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        result = await session.settings.update(**changes)
        if not result.success:
            print(f"Error: {result.error}", file=sys.stderr)
            return 1
    for key, value in session.settings.settings.model_dump().items():
        print(f"  {key}: {value}")
    return 0


async def cmd_profile(session: ClientSession, args: argparse.Namespace) -> int:
    if not session.user_id:
        print("Error: set user_id in the config to use a profile", file=sys.stderr)
        return 1
    result = await session.profile.load()
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    if args.assignments:
        try:
            changes = dict(parse_assignment(a) for a in args.assignments)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        for key in _LIST_PROFILE_FIELDS:
            if isinstance(changes.get(key), str):
                changes[key] = [v.strip() for v in str(changes[key]).split(",") if v.strip()]
        result = await session.profile.update(**changes)
        if not result.success:
            print(f"Error: {result.error}", file=sys.stderr)
            return 1
    if session.profile.profile is None:
        print("No profile")
        return 0
    for key, value in session.profile.profile.model_dump().items():
        print(f"  {key}: {value}")
    return 0


async def cmd_resumes(session: ClientSession, args: argparse.Namespace) -> int:
    await session.resumes.load()
    if args.upload:
        path = Path(args.upload)
        if not path.is_file():
            print(f"Error: file not found: {path}", file=sys.stderr)
            return 1
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        result = await session.resumes.upload(
            path.name, path.read_bytes(), content_type, set_as_primary=args.primary,
        )
    elif args.delete:
        result = await session.resumes.delete(args.delete)
    elif args.set_primary:
        result = await session.resumes.set_primary(args.set_primary)
    else:
        result = None
    if result is not None and not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    if session.resumes.error:
        print(f"Error: {session.resumes.error}", file=sys.stderr)
        return 1

    print(f"{len(session.resumes.resumes)} resumes")
    for resume in session.resumes.resumes:
        mark = " [primary]" if session.resumes.is_primary(resume) else ""
        print(f"  {file_type_label(resume.type)} {resume.name} "
              f"({format_file_size(resume.size)}) {resume.path}{mark}")
    return 0


async def cmd_post(session: ClientSession, args: argparse.Namespace) -> int:
    if not isinstance(session.backend, MemoryBackend):
        print("Error: posting jobs needs the memory backend", file=sys.stderr)
        return 1
    row = session.backend.publish_job({
        "title": args.title,
        "company_name": args.company,
        "location": args.location,
        "job_type": args.job_type,
        "salary_min": args.salary_min,
        "salary_max": args.salary_max,
        "is_remote": args.remote,
    })
    print(f"Posted job {row['id']}: {args.title}")
    return 0


_COMMANDS: dict[str, Callable[[ClientSession, argparse.Namespace], Awaitable[int]]] = {
    "jobs": cmd_jobs,
    "saved": cmd_saved,
    "save": cmd_save,
    "apply": cmd_apply,
    "applications": cmd_applications,
    "withdraw": cmd_withdraw,
    "notifications": cmd_notifications,
    "watch": cmd_watch,
    "settings": cmd_settings,
    "profile": cmd_profile,
    "resumes": cmd_resumes,
    "post": cmd_post,
}


async def run(settings: Settings, args: argparse.Namespace) -> int:
    """Open a session, run one command against it, tear it down."""
    conn = init_store(settings.storage.path)
    backend = get_backend(settings.backend, conn)
    session = ClientSession.from_settings(settings, backend, conn)
    try:
        await session.open(watch=args.command == "watch")
        return await _COMMANDS[args.command](session, args)
    finally:
        session.close()
        await backend.aclose()
        conn.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        code = asyncio.run(run(settings, args))
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
