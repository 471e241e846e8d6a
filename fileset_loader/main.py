"""
Command line entry point for the file set loader.

Loads the staged files named in a YAML load definition into BigQuery:
1. Split the files into file sets (one load job each)
2. Trigger, poll and resolve each set, retrying failed loads
3. Clean up the staged files of every set that loaded
4. Push metrics

Usage:
    fileset-loader load.yaml
    fileset-loader load.yaml --queue backfill --max-retries 3
"""

import argparse
import sys
from dataclasses import replace

import structlog

from fileset_loader.config import Config, load_definition
from fileset_loader.control import ControlTableWriter
from fileset_loader.metrics import MetricsClient
from fileset_loader.models import LoadOutcome
from fileset_loader.pipeline import LoadServices, start_loads
from fileset_loader.scheduler import InMemoryScheduler
from fileset_loader.storage import GCSStagingStore
from fileset_loader.warehouse import BigQueryWarehouse

log = structlog.get_logger()


def configure_logging() -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
    )


def build_services(config: Config) -> LoadServices:
    """Create the production collaborators from configuration."""
    control = ControlTableWriter(config) if config.control_dataset else None

    return LoadServices(
        config=config,
        warehouse=BigQueryWarehouse(config.project_id, config.bq_location),
        store=GCSStagingStore(archive_bucket=config.archive_bucket),
        metrics=MetricsClient(config),
        control=control,
    )


def run(definition_path: str, config: Config, services: LoadServices, queue: str | None = None) -> int:
    """
    Load every file set of a definition and wait for all of them.

    Returns:
        0 if every file set loaded, 1 otherwise
    """
    request = load_definition(definition_path, default_project=config.project_id)

    scheduler = InMemoryScheduler(services=services, default_queue=config.default_queue)
    loads = start_loads(scheduler, request, config.max_files_per_job, queue=queue)
    scheduler.run_until_idle()

    failed = 0
    for file_set, promise in loads:
        try:
            outcome = LoadOutcome.from_dict(scheduler.result(promise))
        except Exception as e:
            failed += 1
            log.error(
                "file_set_failed",
                files=file_set.uris,
                error=str(e),
                error_type=type(e).__name__,
            )
            continue

        log.info(
            "file_set_loaded",
            job_id=outcome.job.job_id,
            attempt=outcome.attempt,
            file_count=len(outcome.files),
        )

    log.info(
        "load_complete",
        file_sets=len(loads),
        file_sets_failed=failed,
        tasks_run=len(scheduler.history),
    )
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Load staged GCS files into BigQuery")
    parser.add_argument("definition", help="Path to the YAML load definition")
    parser.add_argument("--queue", help="Queue to run the load steps on")
    parser.add_argument("--max-retries", type=int, help="Override MAX_RETRIES")
    args = parser.parse_args(argv)

    configure_logging()

    config = Config.from_env()
    if args.max_retries is not None:
        config = replace(config, max_retries=args.max_retries)

    log.info(
        "loader_started",
        env=config.env,
        project_id=config.project_id,
        definition=args.definition,
        max_retries=config.max_retries,
    )

    services = build_services(config)
    try:
        return run(args.definition, config, services, queue=args.queue)
    finally:
        if services.metrics is not None:
            services.metrics.flush()


if __name__ == "__main__":
    sys.exit(main())
