#!/usr/bin/env python3
"""
Command Line Interface for the ABX Exchange Client
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from .config import ClientConfig, load_config, find_default_config
from .errors import ConfigurationError, ExchangeConnectionError, TransportError
from .output_writer import JSONPacketWriter
from .session import SessionConfig, SessionController, format_sequences

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONNECTION = 1
EXIT_CONFIG = 2
EXIT_INCOMPLETE = 3


def configure_logging(debug: bool = False):
    """Configure the root logger (INFO, or DEBUG with --debug)"""
    level = logging.DEBUG if debug else logging.INFO
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Add handler if none exists
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(levelname)s:%(name)s:%(message)s'))
        root_logger.addHandler(handler)
    else:
        for handler in root_logger.handlers:
            handler.setLevel(level)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='abx-client',
        description='Fetch the full ABX exchange packet stream, recover gaps, write JSON',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--config', '-c',
                        help='Configuration file (default: ./config.toml or ./config.json)')
    parser.add_argument('--host', help='Exchange address (overrides config)')
    parser.add_argument('--port', '-p', type=int, help='Exchange port (overrides config)')
    parser.add_argument('--output', '-o', help='Output JSON path (overrides config)')
    parser.add_argument('--max-recovery-passes', type=int,
                        help='Recovery passes before giving up on missing sequences')
    parser.add_argument('--read-timeout', type=float,
                        help='Seconds to wait for data before treating the stream as ended')
    parser.add_argument('--strict', action='store_true',
                        help=f'Exit with status {EXIT_INCOMPLETE} if sequences remain missing')
    parser.add_argument('--debug', '-d', action='store_true', help='Enable DEBUG logging')
    return parser


def resolve_config(args: argparse.Namespace) -> ClientConfig:
    """
    Build the run configuration from a config file and CLI overrides.

    --host and --port together make the config file optional.
    """
    config_path = args.config
    if config_path is None and (args.host is None or args.port is None):
        config_path = find_default_config()
        if config_path is None:
            raise ConfigurationError(
                "No configuration: pass --config, or --host and --port "
                "(looked for config.toml / config.json)")

    overrides = dict(
        read_timeout=args.read_timeout,
        max_recovery_passes=args.max_recovery_passes,
        output_path=args.output,
    )

    if config_path is None:
        return ClientConfig(server_address=args.host, server_port=args.port).with_overrides(**overrides)

    config = load_config(config_path)
    return config.with_overrides(server_address=args.host, server_port=args.port, **overrides)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the abx-client command"""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.debug)

    try:
        config = resolve_config(args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG

    controller = SessionController(SessionConfig.from_client_config(config))
    try:
        result = controller.run()
    except (ExchangeConnectionError, TransportError) as e:
        logger.error(f"Session aborted: {e}")
        return EXIT_CONNECTION

    logger.info(f"Session metrics: {result.metrics.to_dict()}")

    output_path = result.assembler.publish(JSONPacketWriter(Path(config.output_path)))

    missing_text = format_sequences(result.missing, result.missing_count)
    print(f"{len(result.packets)} packets written to {output_path}"
          + (f" ({result.missing_count} missing: {missing_text})" if not result.complete else ""))

    if not result.complete:
        logger.warning(f"Output is incomplete; missing sequences: {missing_text}")
        if args.strict:
            return EXIT_INCOMPLETE

    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
