#!/usr/bin/env python3
"""
AWS Billing Collector - Main CLI Entry Point

Collect cost and usage time series from AWS Cost and Usage Reports stored in S3.
"""

import logging
import os
import queue
import re
import sys
import threading

import click
from colorama import Fore, Style
from colorama import init as colorama_init
from dotenv import load_dotenv

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from datapoints import write_csv, write_json_lines
from interval import IntervalCollector
from s3_billing import DEFAULT_PRODUCT_CODES, BillingCollectionError, BillingCollector

# Initialize colorama
colorama_init()


def setup_logging(debug: bool = False):
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr)
        ]
    )

logger = logging.getLogger(__name__)


def print_banner():
    """Print application banner."""
    click.echo(f"""
{Fore.CYAN}╔══════════════════════════════════════════════════════════════╗
║                                                              ║
║                  AWS Billing Collector                       ║
║                                                              ║
║     Cost and usage time series from your CUR deliveries      ║
║                                                              ║
╚══════════════════════════════════════════════════════════════╝{Style.RESET_ALL}
""", err=True)


def validate_env_vars():
    """Validate required environment variables."""
    required_vars = ['AWS_BILLING_BUCKET', 'AWS_BILLING_PREFIX']
    missing_vars = [var for var in required_vars if not os.getenv(var)]

    if missing_vars:
        click.echo(f"{Fore.RED}Error: Missing required environment variables:{Style.RESET_ALL}")
        for var in missing_vars:
            click.echo(f"  - {var}")
        click.echo(f"\n{Fore.YELLOW}Please set these in your .env file or environment.{Style.RESET_ALL}")
        click.echo(f"{Fore.YELLOW}See .env.example for reference.{Style.RESET_ALL}")
        sys.exit(1)


def write_points(points, output, output_format):
    """Write points to a file, or to stdout as JSON lines."""
    if output_format == 'csv':
        return write_csv(points, output)
    if output:
        with open(output, 'a', encoding='utf-8') as f:
            return write_json_lines(points, f, progress=True)
    return write_json_lines(points, sys.stdout)


@click.command()
@click.option('--product-codes', '-p', type=str, help='Regular expression selecting product codes. Default: all')
@click.option('--purge-days', type=int, help='Delete report objects older than this many days (0 = never). Default: 0')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Output file. Default: stdout')
@click.option('--format', 'output_format', type=click.Choice(['json', 'csv']), default='json',
              help='Output format. Default: json (one data point per line)')
@click.option('--interval', type=float, help='Collect repeatedly, every INTERVAL seconds')
@click.option('--host', type=str, help='Value of the host tag. Default: this hostname')
@click.option('--debug', is_flag=True, help='Enable debug logging')
def collect_billing(product_codes, purge_days, output, output_format, interval, host, debug):
    """
    Collect AWS billing metrics from Cost and Usage Reports.

    Reads the newest report of every billing period from S3 and emits:
    - Hourly cost and usage per product, operation and resource
    - Total cost by product
    - Usage by operation and by resource

    Configuration is done via environment variables (see .env.example).
    """
    # Setup
    setup_logging(debug)
    print_banner()

    # Load environment variables
    load_dotenv()

    # Validate configuration
    validate_env_vars()

    bucket = os.getenv('AWS_BILLING_BUCKET')
    prefix = os.getenv('AWS_BILLING_PREFIX')
    aws_profile = os.getenv('AWS_PROFILE')
    aws_region = os.getenv('AWS_REGION', 'us-east-1')

    assert bucket is not None, "AWS_BILLING_BUCKET must be set"
    assert prefix is not None, "AWS_BILLING_PREFIX must be set"

    product_codes = product_codes or os.getenv('AWS_BILLING_PRODUCT_CODES', DEFAULT_PRODUCT_CODES)

    try:
        purge_days = purge_days if purge_days is not None else int(os.getenv('AWS_BILLING_PURGE_DAYS', '0'))
    except ValueError:
        click.echo(f"{Fore.RED}Error: AWS_BILLING_PURGE_DAYS environment variable must be an integer{Style.RESET_ALL}")
        sys.exit(1)

    if purge_days < 0:
        click.echo(f"{Fore.RED}Error: --purge-days must not be negative, got {purge_days}{Style.RESET_ALL}")
        sys.exit(1)

    if interval is not None and interval <= 0:
        click.echo(f"{Fore.RED}Error: --interval must be positive, got {interval}{Style.RESET_ALL}")
        sys.exit(1)

    if output_format == 'csv' and not output:
        click.echo(f"{Fore.RED}Error: --format csv requires --output{Style.RESET_ALL}")
        sys.exit(1)

    click.echo(f"{Fore.CYAN}Configuration:{Style.RESET_ALL}", err=True)
    click.echo(f"  S3 Bucket: {bucket}", err=True)
    click.echo(f"  S3 Prefix: {prefix}", err=True)
    click.echo(f"  Product Codes: {product_codes}", err=True)
    click.echo(f"  Purge After: {f'{purge_days} days' if purge_days else 'disabled'}", err=True)
    click.echo(f"  Output: {output or 'stdout'} ({output_format})", err=True)
    click.echo("", err=True)

    try:
        collector = BillingCollector(
            bucket=bucket,
            prefix=prefix,
            product_codes=product_codes,
            purge_days=purge_days,
            aws_profile=aws_profile,
            aws_region=aws_region,
            host=host,
        )
    except re.error as e:
        click.echo(f"{Fore.RED}Error: Invalid product code expression: {e}{Style.RESET_ALL}")
        sys.exit(1)
    except Exception as e:
        logger.exception("Error initializing collector")
        click.echo(f"\n{Fore.RED}Error: {str(e)}{Style.RESET_ALL}")
        sys.exit(1)

    if interval:
        run_forever(collector, interval, output, output_format)
        return

    try:
        points = collector.collect()
    except BillingCollectionError as e:
        logger.error(f"Collection failed at stage '{e.stage}'")
        if e.points:
            write_points(e.points, output, output_format)
        click.echo(f"\n{Fore.RED}Error: {str(e)}{Style.RESET_ALL}", err=True)
        if debug:
            raise
        sys.exit(1)

    written = write_points(points, output, output_format)
    click.echo(f"\n{Fore.GREEN}✓ Collected {written} data points{Style.RESET_ALL}", err=True)


def run_forever(collector, interval, output, output_format):
    """Run the collector on an interval until interrupted."""
    points = queue.Queue()
    stop = threading.Event()
    runner = IntervalCollector(collector.collect, interval=interval, name=f"awsBilling-{collector.bucket}")
    worker = threading.Thread(target=runner.run, args=(points, stop), daemon=True)
    worker.start()
    click.echo(f"{Fore.GREEN}Collecting every {interval:g} seconds, Ctrl+C to stop{Style.RESET_ALL}", err=True)

    try:
        while worker.is_alive():
            batch = []
            try:
                batch.append(points.get(timeout=1))
                while True:
                    batch.append(points.get_nowait())
            except queue.Empty:
                pass
            if batch:
                write_points(batch, output, output_format)
    except KeyboardInterrupt:
        click.echo(f"\n{Fore.YELLOW}Stopping...{Style.RESET_ALL}", err=True)
    finally:
        stop.set()
        worker.join(timeout=5)


if __name__ == '__main__':
    collect_billing()
