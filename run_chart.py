#!/usr/bin/env python3
"""Entry point script to run the chart monitor."""

import argparse
import asyncio
import logging
import sys
import yaml
from pathlib import Path

from pydantic import ValidationError

from axechart.config import PipelineConfig
from axechart.monitor import ChartMonitor


def setup_logging(level: str = "INFO"):
    """Configure logging with formatting.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s | %(levelname)-8s | %(message)s',
        datefmt='%H:%M:%S'
    )

    # Reduce noise from aiohttp
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def load_config(config_path: str = "config.yaml") -> dict:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file

    Returns:
        Configuration dictionary
    """
    config_file = Path(config_path)

    if not config_file.exists():
        print(f"Error: Config file not found: {config_path}")
        print("Please copy config.yaml.example to config.yaml and update with your device IP")
        sys.exit(1)

    with open(config_file) as f:
        config = yaml.safe_load(f)

    return config or {}


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="AxeOS chart pipeline monitor")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--device", help="Device IP (overrides config)")
    parser.add_argument("--dashboard", action="store_true", help="Show the live terminal panel")
    parser.add_argument("--log-level", help="Log level (overrides config)")
    return parser.parse_args(argv)


async def run(monitor: ChartMonitor, dashboard: bool):
    logger = logging.getLogger(__name__)
    try:
        await monitor.run(dashboard=dashboard)
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
    finally:
        store = monitor.pipeline.storage.store if monitor.pipeline.storage else None
        if store is not None and hasattr(store, "close"):
            store.close()


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    try:
        raw = load_config(args.config)
    except (OSError, yaml.YAMLError) as e:
        print(f"Error loading config: {e}")
        sys.exit(1)

    chart_section = dict(raw.get("chart", {}) or {})
    if args.device:
        chart_section["device"] = args.device

    log_level = args.log_level or (raw.get("logging") or {}).get("log_level", "INFO")
    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    try:
        config = PipelineConfig.from_yaml(chart_section)
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}")
        sys.exit(1)

    if config.device is None:
        print("Error: no device configured (set chart.device in config.yaml or pass --device)")
        sys.exit(1)

    monitor = ChartMonitor(config)

    try:
        asyncio.run(run(monitor, args.dashboard))
    except KeyboardInterrupt:
        logger.info("Monitor stopped")


if __name__ == "__main__":
    main()
