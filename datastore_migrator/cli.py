"""Command line entry point for datastore-migrator."""

import argparse
import asyncio
import os
import sys
from pathlib import Path

from .core.config_loader import MigratorConfig, load_config
from .core.container_runtime import DockerRuntime
from .core.exceptions import ConfigurationError
from .core.logging_config import get_logger, setup_logging
from .core.migration import MigrationOrchestrator, format_report, report_json
from .core.subprocess_manager import managed_subprocess
from .models import EngineKind, MigrationReport, RedisMethod

EXIT_FATAL = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    default_log_level = os.getenv("LOG_LEVEL", "INFO")

    parser = argparse.ArgumentParser(
        prog="datastore-migrator",
        description="Consolidate per-service database containers into one target container",
    )
    parser.add_argument("--target", help="Target container name")
    parser.add_argument(
        "--engine", choices=[kind.value for kind in EngineKind], help="Target engine kind"
    )
    parser.add_argument(
        "--method",
        choices=[method.value for method in RedisMethod],
        help="Redis migration strategy (default: live)",
    )
    parser.add_argument("--services-root", type=Path, help="Directory holding one folder per service")
    parser.add_argument("--workers", type=int, help="Concurrent dumps (default: 3)")
    parser.add_argument(
        "--import-concurrency", type=int, help="Concurrent provision/import jobs (default: 1)"
    )
    parser.add_argument("--dump-dir", type=Path, help="Directory receiving dump artifacts")
    parser.add_argument("--target-user", help="Target superuser name")
    parser.add_argument(
        "--target-port", type=int, help="Port the target server listens on inside its container"
    )
    parser.add_argument(
        "--target-password",
        help="Target superuser password (auto-detected from the target container when omitted)",
    )
    parser.add_argument("--config", help="Configuration file path")
    parser.add_argument(
        "--exclude", action="append", default=[], metavar="NAME", help="Service to skip (repeatable)"
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser.parse_args(argv)


def apply_args(config: MigratorConfig, args: argparse.Namespace) -> MigratorConfig:
    """Overlay CLI flags on the loaded configuration (CLI wins)."""
    if args.target:
        config.target = args.target
    if args.engine:
        config.engine = EngineKind(args.engine)
    if args.method:
        config.redis.method = RedisMethod(args.method)
    if args.services_root:
        config.services_root = args.services_root
    if args.workers is not None:
        if args.workers < 1:
            raise ConfigurationError("--workers must be at least 1")
        config.workers = args.workers
    if args.import_concurrency is not None:
        if args.import_concurrency < 1:
            raise ConfigurationError("--import-concurrency must be at least 1")
        config.import_concurrency = args.import_concurrency
    if args.dump_dir:
        config.dump_dir = args.dump_dir
    if args.target_user:
        config.target_user = args.target_user
    if args.target_password:
        config.target_password = args.target_password
    if args.target_port is not None:
        if not 1 <= args.target_port <= 65535:
            raise ConfigurationError("--target-port must be between 1 and 65535")
        config.target_port = args.target_port
    if args.exclude:
        config.exclude_services = [*config.exclude_services, *args.exclude]
    config.require_target()
    return config


def _log_file_size() -> int:
    try:
        size = int(os.getenv("LOG_FILE_SIZE_MB", "10"))
    except ValueError:
        return 10
    return size if 1 <= size <= 100 else 10


async def run_migration(config: MigratorConfig) -> MigrationReport:
    """Run one migration, terminating any child processes left behind."""
    async with managed_subprocess() as manager:
        orchestrator = MigrationOrchestrator(config, runtime=DockerRuntime(manager))
        return await orchestrator.run()


def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns the process exit code."""
    args = parse_args(argv)
    setup_logging(
        log_dir=os.getenv("LOG_DIR"), log_level=args.log_level, max_file_size_mb=_log_file_size()
    )
    logger = get_logger("cli")

    try:
        config = apply_args(load_config(args.config), args)
        report = asyncio.run(run_migration(config))
    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.warning("Migration interrupted")
        return EXIT_FATAL

    sys.stdout.write(report_json(report) if args.json else format_report(report))
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
