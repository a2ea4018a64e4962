#!/usr/bin/env python3
"""
Optimize the portfolio gallery images.

Writes thumb/medium/large/full derivatives of every image in the portfolio
directory as WebP and progressive JPEG, then a manifest.json index.

Usage:
    python optimize_portfolio.py                 # Uses optimize_config.yaml if present
    python optimize_portfolio.py --dry-run       # Preview output names and widths
    python optimize_portfolio.py --input-dir photos --output-dir photos/optimized
"""

import argparse
import sys
from typing import List, Optional

from loguru import logger
from tqdm import tqdm

from image_optimizer import BatchResult, ImageOptimizer


def _tqdm_sink(message):
    tqdm.write(message, end="")


def setup_logging(verbose: bool = False, log_file: Optional[str] = None,
                  progress_bar: bool = False):
    """Progress on stdout, failures on stderr, optional rotating debug log"""
    logger.remove()
    logger.add(
        _tqdm_sink if progress_bar else sys.stdout,
        level="DEBUG" if verbose else "INFO",
        format="{message}",
        filter=lambda record: record["level"].no < logger.level("ERROR").no,
    )
    logger.add(sys.stderr, level="ERROR", format="{message}")
    if log_file:
        logger.add(log_file, rotation="10 MB", level="DEBUG")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Generate web derivatives of portfolio images')
    parser.add_argument('--config', default='optimize_config.yaml',
                        help='YAML config file (defaults apply when missing)')
    parser.add_argument('--input-dir', help='Directory holding the source images')
    parser.add_argument('--output-dir', help='Directory the tiers and manifest are written to')
    parser.add_argument('--dry-run', action='store_true',
                        help='Show what would be written without touching the filesystem')
    parser.add_argument('--verbose', action='store_true', help='Log debug output')
    return parser.parse_args(argv)


def print_summary(result: BatchResult, optimizer: ImageOptimizer):
    print("=" * 50)
    print("Optimization complete!" if not optimizer.dry_run else "Dry run complete!")
    print(f"Processed: {len(result.processed)} images")
    if result.failed:
        print(f"Failed: {len(result.failed)} images")
        for failure in result.failed:
            print(f"  {failure['file']}: {failure['error']}")
    if not optimizer.dry_run:
        print(f"Written: {result.total_bytes / 1024:,.0f}KB")
    print(f"Output: {optimizer.output_dir}")
    print("")
    print("Next steps:")
    print("1. Update HTML to use srcset with optimized images")
    print("2. Use <picture> element for WebP with JPEG fallback")
    print("=" * 50)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    # Console sinks first so config loading never hits loguru's default handler
    setup_logging(verbose=args.verbose)
    optimizer = ImageOptimizer(
        config_path=args.config,
        input_dir=args.input_dir,
        output_dir=args.output_dir,
        dry_run=args.dry_run,
    )
    setup_logging(
        verbose=args.verbose,
        log_file=optimizer.config.get("log_file"),
        progress_bar=optimizer.config["progress_bar"],
    )

    print("=" * 50)
    print("Portfolio Image Optimization")
    print("=" * 50)
    print("")

    result = optimizer.process_batch()

    print("")
    print_summary(result, optimizer)
    return 0


if __name__ == '__main__':
    sys.exit(main())
