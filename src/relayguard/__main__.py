"""CLI entry point for relayguard.

Two commands:

* ``init``: create the moderation schema and exit.
* ``management``: run the NIP-86 management service, once (``--once``)
  or continuously with a Prometheus metrics server.

Examples:
    ```bash
    python -m relayguard init
    python -m relayguard management --log-level DEBUG
    python -m relayguard management --config config/services/management.yaml
    ```
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from relayguard.core.base_service import BaseService
from relayguard.core.exceptions import ConfigurationError, DatabaseError
from relayguard.core.logger import Logger, StructuredFormatter
from relayguard.core.metrics import MetricsServer
from relayguard.core.store import ModerationStore
from relayguard.core.yaml import load_yaml
from relayguard.models.constants import ServiceName
from relayguard.services.management import Management


CONFIG_BASE = Path("config")
STORE_CONFIG = CONFIG_BASE / "store.yaml"
INIT_COMMAND = "init"

SERVICE_REGISTRY: dict[str, tuple[type[BaseService[Any]], Path]] = {
    ServiceName.MANAGEMENT: (Management, CONFIG_BASE / "services" / "management.yaml"),
}

logger = Logger("cli")


async def run_service(
    service_name: str,
    service_class: type[BaseService[Any]],
    store: ModerationStore,
    service_dict: dict[str, Any],
    *,
    once: bool,
) -> int:
    """Run a service in one-shot or continuous mode.

    Returns:
        Exit code: 0 for success, 1 for failure.
    """
    if service_dict:
        service = service_class.from_dict(service_dict, store=store)
    else:
        service = service_class(store=store)

    if once:
        try:
            async with service:
                await service.run()
            logger.info(f"{service_name}_completed")
            return 0
        except Exception as e:  # Intentionally broad: CLI error boundary for one-shot mode
            logger.error(f"{service_name}_failed", error=str(e))
            return 1

    metrics_config = service.config.metrics
    metrics_server = MetricsServer(metrics_config)
    await metrics_server.start()
    if metrics_config.enabled:
        logger.info(
            "metrics_server_started",
            host=metrics_config.host,
            port=metrics_config.port,
            path=metrics_config.path,
        )

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        service.request_shutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        async with service:
            await service.run_forever()
        return 0
    except Exception as e:  # Intentionally broad: CLI error boundary for continuous mode
        logger.error(f"{service_name}_failed", error=str(e))
        return 1
    finally:
        await metrics_server.stop()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="relayguard",
        description="relayguard moderation layer",
    )

    parser.add_argument(
        "command",
        choices=[INIT_COMMAND, *SERVICE_REGISTRY.keys()],
        help="Create the schema, or run a service",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Service config path (default: config/services/<service>.yaml)",
    )

    parser.add_argument(
        "--store-config",
        type=Path,
        default=STORE_CONFIG,
        help=f"Store config path (default: {STORE_CONFIG})",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run once and exit (default: run continuously)",
    )

    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Install a ``StructuredFormatter`` on the root logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    """Load a YAML file as a dict, returning ``{}`` if the file does not exist."""
    if not path.exists():
        logger.warning("config_not_found", path=str(path))
        return {}
    return load_yaml(str(path))


def _build_store(store_dict: dict[str, Any], application_name: str) -> ModerationStore:
    pool = store_dict.setdefault("pool", {})
    server_settings = pool.setdefault("server_settings", {})
    server_settings.setdefault("application_name", application_name)
    return ModerationStore.from_dict(store_dict)


async def main(argv: list[str] | None = None) -> int:
    """Parse args, connect the store, initialize the schema, run the command."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        store = _build_store(_load_yaml_dict(args.store_config), f"relayguard-{args.command}")
        service_dict: dict[str, Any] = {}
        if args.command != INIT_COMMAND:
            service_class, default_path = SERVICE_REGISTRY[args.command]
            service_dict = _load_yaml_dict(args.config or default_path)
    except (ConfigurationError, ValueError) as e:
        logger.error("config_invalid", error=str(e))
        return 2

    try:
        async with store:
            await store.init()
            if args.command == INIT_COMMAND:
                logger.info("init_completed")
                return 0
            return await run_service(
                service_name=args.command,
                service_class=service_class,
                store=store,
                service_dict=service_dict,
                once=args.once,
            )
    except DatabaseError as e:
        logger.error("database_unavailable", error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
