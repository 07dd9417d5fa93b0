#!/usr/bin/env python3
"""
battery-monitor: Battery Telemetry Diagnostics Daemon

Main entry point for the battery-monitor daemon. This service:
1. Loads a pre-recorded battery telemetry dataset (JSON)
2. Validates every sample once, refusing to start on bad data
3. Replays one sample per tick through the derivation engine
4. Serves the latest diagnostic record and the dataset over HTTP

Usage:
    # Start daemon
    battery-monitor --config /etc/battery-monitor/config.toml

    # Quick run against a local dataset
    battery-monitor --dataset data/enc_data.json --port 4000

Architecture:
    ┌──────────────────────────────────────────────────────────────┐
    │                       battery-monitor                         │
    │                                                               │
    │  ┌──────────────┐   ┌───────────────────┐   ┌─────────────┐   │
    │  │ enc_data.json│──▶│ Cycling Scheduler │──▶│ Web Server  │   │
    │  │ (validated)  │   │ + Derivation      │   │ /api/latest │   │
    │  └──────────────┘   └───────────────────┘   └─────────────┘   │
    └──────────────────────────────────────────────────────────────┘
"""

import argparse
import copy
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import toml

# Set up logging before imports that use it
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('battery-monitor')

from .dataset.loader import load_dataset, summarize
from .engine.cycling_scheduler import CyclingScheduler
from .errors import ConfigError, DatasetError
from .web import WebServer


DEFAULT_CONFIG: Dict[str, Any] = {
    'dataset': {
        'path': 'data/enc_data.json',
        'strict_ranges': False,
    },
    'scheduler': {
        'interval': 3.0,
    },
    'web': {
        'port': 4000,
        'bind_address': '0.0.0.0',
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge `override` into a copy of `base`."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from TOML file, merged over the defaults.

    Raises:
        ConfigError: If a config path is given but cannot be parsed
    """
    if not config_path:
        return copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Config file {path} not found, using defaults")
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        with open(path, 'r') as f:
            return _merge(DEFAULT_CONFIG, toml.load(f))
    except toml.TomlDecodeError as e:
        raise ConfigError(f"invalid config file {path}: {e}")


def apply_overrides(config: Dict[str, Any], args: argparse.Namespace,
                    environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Apply command-line flags and the PORT environment variable.

    Precedence: CLI flag > PORT > config file > defaults.
    """
    environ = os.environ if environ is None else environ

    env_port = environ.get('PORT')
    if env_port:
        try:
            config['web']['port'] = int(env_port)
        except ValueError:
            logger.warning(f"Ignoring non-numeric PORT={env_port!r}")

    if args.dataset:
        config['dataset']['path'] = args.dataset
    if args.strict_ranges:
        config['dataset']['strict_ranges'] = True
    if args.interval is not None:
        config['scheduler']['interval'] = args.interval
    if args.port is not None:
        config['web']['port'] = args.port
    if args.bind:
        config['web']['bind_address'] = args.bind

    return config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='battery-monitor: Battery Telemetry Diagnostics Daemon',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start with config file
    battery-monitor --config /etc/battery-monitor/config.toml

    # Replay a dataset every second on port 8080
    battery-monitor --dataset data/enc_data.json --interval 1 --port 8080
        """
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to TOML configuration file'
    )
    parser.add_argument(
        '--dataset', '-d',
        help='Telemetry dataset JSON file (overrides config)'
    )
    parser.add_argument(
        '--interval', '-i',
        type=float,
        help='Seconds between ticks (default: 3.0)'
    )
    parser.add_argument(
        '--port', '-p',
        type=int,
        help='HTTP port (default: 4000, or $PORT)'
    )
    parser.add_argument(
        '--bind',
        help='HTTP bind address (default: 0.0.0.0)'
    )
    parser.add_argument(
        '--strict-ranges',
        action='store_true',
        help='Reject samples with SoC/SoH outside 0-100%% instead of warning'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = apply_overrides(load_config(args.config), args)

        dataset_path = Path(config['dataset']['path'])
        raw_samples, samples = load_dataset(
            dataset_path,
            strict_ranges=config['dataset'].get('strict_ranges', False)
        )

        scheduler = CyclingScheduler(
            raw_samples,
            interval=float(config['scheduler']['interval']),
            normalized=samples
        )
    except (DatasetError, ValueError) as e:
        logger.error(f"Startup failed: {e}")
        return 1

    logger.info("=" * 60)
    logger.info("battery-monitor starting")
    logger.info(f"  Dataset: {dataset_path} ({len(samples)} samples)")
    logger.info(f"  Interval: {scheduler.interval:.1f} s")
    logger.info(f"  HTTP: {config['web']['bind_address']}:{config['web']['port']}")
    logger.info("=" * 60)

    web_server = WebServer(
        port=int(config['web']['port']),
        bind_address=config['web']['bind_address']
    )
    web_server.set_scheduler(scheduler, dataset_summary=summarize(samples))

    try:
        web_server.start()
    except OSError:
        return 1

    try:
        scheduler.run()
    finally:
        web_server.stop()

    return 0


if __name__ == '__main__':
    sys.exit(main())
