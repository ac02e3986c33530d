"""Command-line entrypoints for the documentation crawler."""
from __future__ import annotations

import argparse
import asyncio
import os
from pathlib import Path
from typing import Dict, List, Optional

import orjson
import tomllib
from dotenv import load_dotenv

try:
    import uvloop
except ImportError:  # pragma: no cover - uvloop optional on some platforms
    uvloop = None

from docucrawl.fetch.session import create_page_fetcher
from docucrawl.observability.log import configure_logging
from docucrawl.observability.metrics import MetricsRegistry
from docucrawl.orchestrator.coordinator import CrawlCoordinator
from docucrawl.orchestrator.errors import CrawlError
from docucrawl.orchestrator.queue import WorkQueue
from docucrawl.orchestrator.settings import CrawlerSettings, RuntimeConfig
from docucrawl.orchestrator.worker import worker_dispatcher

DEFAULT_SETTINGS = Path("config/settings.toml")
DEFAULT_LOGGING = Path("config/logging.yaml")
DATABASE_ENV = "DOCUCRAWL_DATABASE"


def load_settings(path: Path) -> Dict[str, object]:
    """Read the TOML configuration file; a missing file means defaults."""
    if not path.exists():
        return {}
    with path.open("rb") as handle:
        return tomllib.load(handle)


def build_runtime_config(settings: Dict[str, object]) -> RuntimeConfig:
    config = RuntimeConfig.from_settings(settings)
    database = os.environ.get(DATABASE_ENV)
    if database:
        config = config.model_copy(update={"database": Path(database)})
    return config


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="docucrawl", description="documentation site crawler")
    parser.add_argument("--config", default=str(DEFAULT_SETTINGS), help="Path to settings TOML")
    sub = parser.add_subparsers(dest="command", required=True)

    crawl = sub.add_parser("crawl", help="Start a crawl job and run it to completion")
    crawl.add_argument("url", help="Seed URL")
    crawl.add_argument("--stay-on-domain", action=argparse.BooleanOptionalAction, default=None)
    crawl.add_argument("--stay-on-path", action=argparse.BooleanOptionalAction, default=None)
    crawl.add_argument("--exclude", nargs="*", default=None, help="File extensions to skip")
    crawl.add_argument("--max-parallel", type=int, default=None, help="Concurrent workers per job")
    crawl.add_argument("--engine", choices=["browser", "http"], help="Override the fetch engine")
    crawl.add_argument("--metrics", help="Write worker counters to this JSON file")

    resume = sub.add_parser("resume", help="Dispatch workers for an existing job")
    resume.add_argument("job_id")
    resume.add_argument("--engine", choices=["browser", "http"], help="Override the fetch engine")
    resume.add_argument("--metrics", help="Write worker counters to this JSON file")

    for name, help_text in (
        ("cancel", "Cancel a crawl job"),
        ("status", "Show progress counts for a job"),
        ("tree", "Show crawled URLs as a tree"),
    ):
        command = sub.add_parser(name, help=help_text)
        command.add_argument("job_id")

    content = sub.add_parser("content", help="Print the extracted text of one entry")
    content.add_argument("entry_id")

    jobs = sub.add_parser("jobs", help="List crawl jobs of a data source")
    jobs.add_argument("source_id")

    return parser


def _print(payload: object) -> None:
    print(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode())


def _crawler_settings(args: argparse.Namespace, defaults: CrawlerSettings) -> CrawlerSettings:
    overrides: Dict[str, object] = {}
    if args.stay_on_domain is not None:
        overrides["stay_on_domain"] = args.stay_on_domain
    if args.stay_on_path is not None:
        overrides["stay_on_path"] = args.stay_on_path
    if args.exclude is not None:
        overrides["exclude_file_types"] = args.exclude
    if args.max_parallel is not None:
        overrides["max_parallel_scrapers"] = args.max_parallel
    return CrawlerSettings.model_validate({**defaults.to_payload(), **overrides})


async def run_crawl(args: argparse.Namespace, config: RuntimeConfig) -> Dict[str, object]:
    """Start (or resume) a job and keep dispatching workers until none remain."""
    queue = WorkQueue(path=config.database)
    metrics = MetricsRegistry()
    engine = getattr(args, "engine", None) or config.fetch_engine
    async with create_page_fetcher(
        engine=engine,
        user_agent=config.user_agent,
        timeout=config.fetch_timeout_seconds,
    ) as fetcher:
        dispatcher = worker_dispatcher(queue=queue, fetcher=fetcher, config=config, metrics=metrics)
        coordinator = CrawlCoordinator(queue=queue, dispatcher=dispatcher, defaults=config.crawler)
        if args.command == "resume":
            context = await coordinator.resume(args.job_id)
            job_id = context.job_id
            source_id = queue.get_job(job_id).source_id
        else:
            started = await coordinator.start(args.url, _crawler_settings(args, config.crawler))
            job_id, source_id = started.job_id, started.source_id
        await dispatcher.join()
        progress = await coordinator.status(job_id)

    if getattr(args, "metrics", None):
        metrics.export(path=Path(args.metrics), job_id=job_id)
    return {
        "job_id": job_id,
        "source_id": source_id,
        "status": progress.as_dict(),
        "workers": dispatcher.submitted,
        "worker_errors": [repr(error) for error in dispatcher.errors],
    }


async def _run_query(args: argparse.Namespace, config: RuntimeConfig) -> object:
    coordinator = CrawlCoordinator(queue=WorkQueue(path=config.database), defaults=config.crawler)
    if args.command == "cancel":
        return {"job_id": args.job_id, "entries_cancelled": await coordinator.cancel(args.job_id)}
    if args.command == "status":
        return (await coordinator.status(args.job_id)).as_dict()
    if args.command == "tree":
        return (await coordinator.tree(args.job_id)).to_dict()
    if args.command == "content":
        return {"entry_id": args.entry_id, "content": await coordinator.content(args.entry_id)}
    if args.command == "jobs":
        return [
            {
                "job_id": job.id,
                "seed_url": job.seed_url,
                "status": job.status.value,
                "created_at": job.created_at.isoformat(),
            }
            for job in await coordinator.jobs(args.source_id)
        ]
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(DEFAULT_LOGGING)
    config = build_runtime_config(load_settings(Path(args.config)))

    if uvloop is not None and args.command in {"crawl", "resume"}:
        uvloop.install()

    try:
        if args.command in {"crawl", "resume"}:
            _print(asyncio.run(run_crawl(args, config)))
        else:
            _print(asyncio.run(_run_query(args, config)))
    except CrawlError as exc:
        raise SystemExit(f"{args.command} failed: {exc}")


if __name__ == "__main__":
    main()
