"""
ethnode CLI entry point.

Supervise Docker-run blockchain clients, or run jobs against a running
supervisor through its API.

Usage::

    python -m ethnode run --config deployment.yaml
    python -m ethnode run --config deployment.yaml --keep-data
    python -m ethnode teardown --config deployment.yaml
    python -m ethnode nodes
    python -m ethnode status --node reth
    python -m ethnode logs --node lighthouse --tail 200
    python -m ethnode restart --node lighthouse --clear-cache
    python -m ethnode restart --node reth --new-config overrides.yaml
    python -m ethnode stop --node reth

Commands:
    run        Provision the environment and supervise every client
    teardown   Remove the clients, their data volumes and the environment
    nodes      List supervised nodes
    status     Report a node's lifecycle state
    health     Probe a node now
    logs       Print a node's recent log lines
    restart    Restart a node, optionally wiping its data or changing its config
    stop       Stop a node and end its supervision
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import yaml
from pydantic import ValidationError

from ethnode.api import DEFAULT_API_URL, ApiClient, ApiClientError, ApiServer
from ethnode.deployment import DeploymentConfig
from ethnode.engine import DockerEngine
from ethnode.environment import EnvironmentInitializer, generate_jwt_secret, remove_volume
from ethnode.jobs import JobResult, RestartParams
from ethnode.service import Supervisor
from ethnode.types import EthnodeError, ResourceNotFoundError

logger = logging.getLogger(__name__)


class ColoredFormatter(logging.Formatter):
    """Logging formatter with ANSI colors for better readability."""

    # ANSI color codes
    GREY = "\x1b[38;5;244m"
    BLUE = "\x1b[38;5;39m"
    GREEN = "\x1b[38;5;40m"
    YELLOW = "\x1b[38;5;220m"
    RED = "\x1b[38;5;196m"
    BOLD_RED = "\x1b[38;5;196;1m"
    CYAN = "\x1b[38;5;51m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors."""
        color = self.LEVEL_COLORS.get(record.levelno, self.RESET)
        timestamp = f"{self.CYAN}{self.formatTime(record, self.datefmt)}{self.RESET}"
        levelname = f"{color}{record.levelname:8}{self.RESET}"
        name = f"{self.BLUE}{record.name}{self.RESET}"
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return f"{timestamp} {levelname} {name}: {message}"


def setup_logging(verbose: bool = False, no_color: bool = False) -> None:
    """Configure process-wide logging with optional colors."""
    level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if no_color or not sys.stderr.isatty():
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = ColoredFormatter(datefmt="%Y-%m-%d %H:%M:%S")

    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    # The docker SDK logs every HTTP request at debug level.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("docker").setLevel(logging.INFO)


# -----------------------------------------------------------------------------
# Local commands
# -----------------------------------------------------------------------------


async def run_deployment(config: DeploymentConfig, keep_data: bool = False) -> int:
    """
    Supervise a deployment until shutdown.

    On shutdown every client is cleaned up unless keep_data is set here or
    in the deployment file.

    Returns:
        Process exit code: 1 if any node failed.
    """
    engine = DockerEngine.from_env()
    initializer = EnvironmentInitializer(
        engine=engine,
        environment=config.to_environment(),
        secret=config.jwt_secret or generate_jwt_secret(),
    )
    supervisor = Supervisor.from_configs(
        engine,
        initializer,
        config.to_node_configs(),
        policy=config.health.to_policy(),
        keep_data=keep_data or config.keep_data,
        exit_on_failure=config.exit_on_failure,
    )
    api_server = ApiServer(config.api.to_server_config(), supervisor)

    await api_server.start()
    try:
        await supervisor.run()
    finally:
        await api_server.stop()

    failures = supervisor.failures
    for name, exc in failures.items():
        logger.error("%s failed: %s", name, exc)
    return 1 if failures else 0


async def teardown_deployment(config: DeploymentConfig, keep_data: bool = False) -> int:
    """
    Remove every client container, their data volumes and the shared environment.

    Works without a running supervisor: containers are addressed by name.
    """
    engine = DockerEngine.from_env()

    for node in config.to_node_configs():
        try:
            await engine.remove_container(node.name, force=True)
            logger.info("Removed container %s", node.name)
        except ResourceNotFoundError:
            logger.debug("Container %s already absent", node.name)
        if node.data_volume is not None and not keep_data:
            await remove_volume(engine, node.data_volume.name)

    # The secret in the initializer is unused by teardown.
    await EnvironmentInitializer(engine, config.to_environment()).teardown()
    return 0


# -----------------------------------------------------------------------------
# Remote commands
# -----------------------------------------------------------------------------


def _print_result(result: JobResult) -> int:
    print(json.dumps(result.model_dump(mode="json"), indent=2))
    return 0 if result.success else 1


async def run_job(args: argparse.Namespace) -> int:
    """Run one job through a supervisor's API and print its result."""
    client = ApiClient(args.api_url)

    match args.command:
        case "nodes":
            print(json.dumps(await client.nodes(), indent=2))
            return 0
        case "status":
            result = await client.status(args.node)
        case "health":
            result = await client.health(args.node)
        case "stop":
            result = await client.stop(args.node)
        case "restart":
            new_config = None
            if args.new_config is not None:
                new_config = args.new_config.read_text(encoding="utf-8")
            params = RestartParams(clear_cache=args.clear_cache, new_config=new_config)
            result = await client.restart(args.node, params)
        case "logs":
            result = await client.logs(args.node, args.tail)
            if result.success and result.data is not None:
                for line in result.data["lines"]:
                    print(line)
                return 0
        case _:
            raise ValueError(f"Unknown command {args.command}")

    return _print_result(result)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ethnode",
        description="Lifecycle manager and health monitor for Docker-run blockchain clients",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--no-color", action="store_true", help="Disable colored logging output"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("run", "Provision the environment and supervise every client"),
        ("teardown", "Remove clients, data volumes and the shared environment"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument(
            "--config", required=True, type=Path, help="Path to the deployment YAML file"
        )
        command.add_argument(
            "--keep-data",
            action="store_true",
            help="Keep client data volumes; run only stops clients on exit",
        )

    remote = argparse.ArgumentParser(add_help=False)
    remote.add_argument(
        "--api-url",
        default=DEFAULT_API_URL,
        help=f"Supervisor API base URL (default: {DEFAULT_API_URL})",
    )

    commands.add_parser("nodes", parents=[remote], help="List supervised nodes")

    for name, help_text in (
        ("status", "Report a node's lifecycle state"),
        ("health", "Probe a node now"),
        ("logs", "Print a node's recent log lines"),
        ("restart", "Restart a node"),
        ("stop", "Stop a node and end its supervision"),
    ):
        command = commands.add_parser(name, parents=[remote], help=help_text)
        command.add_argument("--node", required=True, help="Node name, e.g. reth")
        if name == "logs":
            command.add_argument(
                "--tail", type=int, default=None, help="Number of lines (default: 100)"
            )
        if name == "restart":
            command.add_argument(
                "--clear-cache",
                action="store_true",
                help="Remove the container and its data volume first",
            )
            command.add_argument(
                "--new-config",
                type=Path,
                default=None,
                help="YAML or JSON file with descriptor fields to change",
            )

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, args.no_color)

    if args.command in ("run", "teardown"):
        try:
            config = DeploymentConfig.from_yaml_file(args.config)
        except (OSError, yaml.YAMLError, ValidationError) as exc:
            logger.error("Cannot load configuration: %s", exc)
            return 2

    try:
        if args.command == "run":
            return asyncio.run(run_deployment(config, keep_data=args.keep_data))
        if args.command == "teardown":
            return asyncio.run(teardown_deployment(config, keep_data=args.keep_data))
        return asyncio.run(run_job(args))
    except (EthnodeError, ApiClientError, OSError) as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        return 130


if __name__ == "__main__":
    sys.exit(main())
