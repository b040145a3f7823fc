from __future__ import annotations

import argparse
import json
import sys

from .db import Journal
from .errors import ConfigurationError, ConnectivityError
from .reconciler import Reconciler
from .remote import SSHExecutor
from .runtime import FAILED, OK, SKIPPED, STAGES, RunReport
from .settings import DEFAULT_ENV_FILE, load_settings


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FATAL = 2


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _print_report(report: RunReport) -> None:
    s = report.summary()
    if s["fatal"]:
        print(f"ABORTED: {s['fatal']}")
    for stage in STAGES:
        buckets = s["stages"][stage]
        print(f"{stage}:")
        for outcome in (OK, SKIPPED, FAILED):
            if buckets[outcome]:
                print(f"  {outcome:<8} {', '.join(buckets[outcome])}")
    for f in s["failures"]:
        line = f"FAILED {f['service']} [{f['stage']}]: {f['message']}"
        if f["exit_code"] is not None:
            line += f" (exit {f['exit_code']})"
        print(line)
        if f["output"]:
            print(f"    {f['output']}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ssr", description="Swarm Stack Reconciler")
    p.add_argument(
        "action",
        nargs="?",
        default="deploy",
        choices=["deploy", "list", "cleanup", "events", "serve"],
        help="deploy (default): secrets, build, deploy; list: show services; "
        "cleanup: remove ALL secrets of --service, even in-use ones (destructive); events: show journal; "
        "serve: run the HTTP status API",
    )
    p.add_argument("-s", "--service", help="Only act on this service directory")
    p.add_argument("--env-file", default=DEFAULT_ENV_FILE, help="Configuration file (KEY=VALUE)")
    p.add_argument("--workers", type=int, default=None, help="Process services in parallel")
    p.add_argument("--no-sync", action="store_true", help="Skip the remote git pull")
    p.add_argument("--yes", action="store_true", help="Do not ask for confirmation (cleanup)")
    p.add_argument("--limit", type=int, default=20, help="Number of events to show")
    p.add_argument("--json", action="store_true", help="Print machine-readable output")
    p.add_argument("--host", default="127.0.0.1", help="Bind address (serve)")
    p.add_argument("--port", type=int, default=8000, help="Port (serve)")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(env_file=args.env_file)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FATAL

    journal = Journal(settings.db_path)
    journal.init()

    if args.action == "events":
        _print(journal.latest_events(limit=args.limit))
        return EXIT_OK

    executor = SSHExecutor(
        settings,
        on_command=lambda cmd, res: journal.log_event("DEBUG", f"$ {cmd} -> exit {res.exit_code}"),
    )

    if args.action == "serve":
        import uvicorn

        from .api import create_app

        uvicorn.run(create_app(settings, executor, journal), host=args.host, port=args.port)
        return EXIT_OK

    rec = Reconciler(settings, executor, journal)

    if args.action == "list":
        try:
            rec.probe()
            services = rec.list_services(args.service)
        except ConnectivityError as e:
            print(f"Connectivity error: {e}", file=sys.stderr)
            return EXIT_FATAL
        if args.json:
            _print([{"name": s.name, "artifacts": s.artifacts()} for s in services])
        else:
            for s in services:
                print(f"{s.name:<30} {', '.join(s.artifacts()) or '-'}")
        return EXIT_OK

    if args.action == "cleanup":
        if not args.service:
            print("cleanup requires --service", file=sys.stderr)
            return EXIT_FATAL
        if not args.yes:
            answer = input(
                f"Remove ALL secrets of '{args.service}' on {settings.ssh_host}, including ones in use? [y/N] "
            )
            if answer.strip().lower() not in {"y", "yes"}:
                print("Aborted.")
                return EXIT_FAILED
        report = rec.cleanup(args.service)
    else:
        report = rec.run(only=args.service, workers=args.workers, sync=not args.no_sync)

    if args.json:
        _print(report.summary())
    else:
        _print_report(report)

    if report.fatal:
        return EXIT_FATAL
    return EXIT_FAILED if report.failed else EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
