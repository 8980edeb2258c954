#!/usr/bin/env python

import argparse
import logging
import sys

from tqdm import tqdm

from chicory.config import (
    ConfigurationError,
    build_connector,
    build_workload,
    load_harness_config,
)
from chicory.runner import Runner

logger = logging.getLogger(__name__)


def print_summary(history) -> None:
    print("[Results]")
    print(f"  ok:   {history.ok}")
    print(f"  fail: {history.failed}")
    print(f"  info: {history.indeterminate}")
    for (type_name, error), n in sorted(history.error_counts().items()):
        print(f"    {type_name:<4} {error}: {n}")


def cli():
    """CLI entry point for the chicory harness."""
    parser = argparse.ArgumentParser(
        description="Transactional workload harness: randomized read/write "
                    "transactions with an ok/fail/info outcome history"
    )
    parser.add_argument(
        "config",
        nargs="?",
        default="cfg.toml",
        help="Path to TOML configuration file (default: cfg.toml)"
    )
    parser.add_argument(
        "-o", "--output",
        help="Write the history to this parquet file (overrides [output].path)"
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Override [workload].seed"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all logging except errors"
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress bar"
    )
    args = parser.parse_args()

    # Setup logging
    if args.quiet:
        logging.basicConfig(level=logging.ERROR, format='%(levelname)s: %(message)s')
    elif args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s')
    else:
        logging.basicConfig(level=logging.INFO, format='%(message)s')

    try:
        config = load_harness_config(args.config, seed_override=args.seed)
    except ConfigurationError as e:
        print("Configuration validation failed:")
        for error in e.errors:
            print(f"  ✗ {error}")
        sys.exit(1)

    connector = build_connector(config)
    workload = build_workload(config)

    show_progress = not args.no_progress and not args.verbose and not args.quiet
    pbar = tqdm(total=config.runner.op_count, unit="op", desc="Running") if show_progress else None
    try:
        runner = Runner(
            config.client,
            workload,
            connector,
            config.runner,
            progress=pbar.update if pbar is not None else None,
        )
        runner.setup()
        history = runner.run()
    finally:
        if pbar is not None:
            pbar.close()

    if not args.quiet:
        print_summary(history)

    output_path = args.output or config.output_path
    if output_path:
        logger.info(f"Exporting history to {output_path}")
        history.export_parquet(output_path)


if __name__ == "__main__":
    cli()
