"""agentbridge CLI entry point.

Usage:
    agentbridge run --config bridge.yaml
    agentbridge check --config bridge.yaml
    agentbridge init [--output bridge.yaml]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger


def _load(config_path: str):
    if not Path(config_path).exists():
        logger.error(f"Config file not found: {config_path}")
        sys.exit(1)

    from agentbridge.config import load_config

    return load_config(config_path).with_env()


def cmd_run(args: argparse.Namespace) -> None:
    """Run the bridge server."""
    config = _load(args.config)

    # Configure logging
    logger.remove()
    logger.add(sys.stderr, level=config.logging.level)

    missing = config.missing_secrets()
    if missing:
        logger.error(f"Missing required environment variables: {', '.join(missing)}")
        sys.exit(1)

    logger.info(f"agentbridge starting with config: {args.config}")
    logger.info(f"Listening on: {config.server.listen_host}:{config.server.listen_port}")
    logger.info(
        f"Media streams: inbound={config.server.inbound_path} "
        f"outbound={config.server.outbound_path}"
    )

    from agentbridge.server import run_server

    run_server(config)


def cmd_check(args: argparse.Namespace) -> None:
    """Validate a configuration file and print the resolved flows."""
    config = _load(args.config)

    print("\nagentbridge configuration:")
    print("=" * 40)
    print(f"  listen        {config.server.listen_host}:{config.server.listen_port}")
    print(f"  agent id      {config.agent.agent_id or '(missing)'}")
    for name in ("inbound", "outbound"):
        flow = getattr(config.flows, name)
        print(f"  [{name}]")
        print(f"    lookup      {flow.lookup_url or '(none)'}")
        print(f"    webhook     {flow.webhook.url or '(none)'}")
        print(f"    gate calls  {flow.require_authorization}")

    missing = config.missing_secrets()
    if missing:
        print(f"\nMissing: {', '.join(missing)}")
        sys.exit(1)
    print("\nOK")


def cmd_init(args: argparse.Namespace) -> None:
    """Generate a starter configuration file."""
    output = Path(args.output)

    if output.exists() and not args.force:
        logger.error(f"File already exists: {output}. Use --force to overwrite.")
        sys.exit(1)

    from agentbridge.config import DEFAULT_CONFIG_YAML

    output.write_text(DEFAULT_CONFIG_YAML)
    print(f"Configuration written to: {output}")
    print(f"\nEdit the file and run: agentbridge run --config {output}")


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="agentbridge",
        description="agentbridge - bridge phone calls to a conversational AI agent",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("run", "Run the bridge server"),
        ("check", "Validate a config file"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--config", "-c",
            default="bridge.yaml",
            help="Path to the bridge YAML config file (default: bridge.yaml)",
        )

    init_parser = subparsers.add_parser("init", help="Generate a starter config file")
    init_parser.add_argument(
        "--output", "-o",
        default="bridge.yaml",
        help="Output file path (default: bridge.yaml)",
    )
    init_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite existing file",
    )

    args = parser.parse_args()

    if args.command == "run":
        cmd_run(args)
    elif args.command == "check":
        cmd_check(args)
    elif args.command == "init":
        cmd_init(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
