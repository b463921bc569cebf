"""
BlockLift Command-Line Interface

Inspects transfer plans and benchmarks uploads against the in-memory store.

Author: BlockLift Contributors
Date: 2025
"""

import asyncio
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional

import click

from blocklift import __version__
from blocklift.core.config_manager import ConfigManager
from blocklift.core.logging_config import setup_logging
from blocklift.transfer.client import BlockBlobClient
from blocklift.transfer.context import OperationContext
from blocklift.transfer.exceptions import TransferError
from blocklift.transfer.options import MB
from blocklift.transfer.planner import plan_upload
from blocklift.transfer.source import ContentSource
from blocklift.wire.memory import InMemoryBlockStore

logger = logging.getLogger("blocklift.cli")


@click.group()
@click.version_option(version=__version__, prog_name="blocklift")
@click.pass_context
def cli(ctx):
    """
    BlockLift - chunked parallel block blob transfers
    """
    ctx.ensure_object(dict)


@cli.command()
@click.argument("size", type=int)
@click.option("--chunk-size", default=4 * MB, type=int, show_default=True, help="Chunk size in bytes")
@click.option("--threshold", default=32 * MB, type=int, show_default=True, help="Single-upload threshold in bytes")
@click.option("--parallelism", default=1, type=int, show_default=True, help="Concurrent block uploads")
def plan(size: int, chunk_size: int, threshold: int, parallelism: int):
    """
    Show how an upload of SIZE bytes would be split.

    Examples:
        blocklift plan 104857600
        blocklift plan 104857600 --chunk-size 1048576 --parallelism 8
    """
    overrides = {
        "transfer": {
            "stream_write_size_in_bytes": chunk_size,
            "single_blob_upload_threshold_in_bytes": threshold,
            "parallelism_factor": parallelism,
        }
    }
    try:
        options = ConfigManager().load(overrides=overrides).request_options()
        source = ContentSource(_ZeroStream(), available=size, length=size, seekable=False)
        transfer_plan = plan_upload(source, options)
    except (TransferError, ValueError) as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(1)

    if transfer_plan.single_shot:
        click.echo(f"Single PUT of {size} bytes (1 request)")
        return

    count = transfer_plan.chunk_count
    last = transfer_plan.chunks[-1].length if count else 0
    click.echo(f"{count} blocks of {chunk_size} bytes (last block {last} bytes)")
    click.echo(f"Parallelism: {transfer_plan.parallelism}")
    click.echo(f"Requests: {count + 1} ({count} blocks + commit)")


@cli.command()
@click.option("--size", default=16 * MB, type=int, show_default=True, help="Bytes to upload")
@click.option("--chunk-size", default=None, type=int, help="Chunk size in bytes")
@click.option("--parallelism", default=None, type=int, help="Concurrent block uploads")
@click.option("--transactional-md5", is_flag=True, help="Send a per-chunk MD5")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level",
    show_default=True,
)
def bench(
    size: int,
    chunk_size: Optional[int],
    parallelism: Optional[int],
    transactional_md5: bool,
    config: Optional[Path],
    log_level: str,
):
    """
    Upload random bytes to an in-memory store and read them back.

    Examples:
        blocklift bench --size 67108864 --chunk-size 1048576 --parallelism 8
        blocklift bench --config blocklift.yaml --log-level DEBUG
    """
    transfer = {
        # Always exercise the block protocol
        "single_blob_upload_threshold_in_bytes": 1,
    }
    if chunk_size is not None:
        transfer["stream_write_size_in_bytes"] = chunk_size
    if parallelism is not None:
        transfer["parallelism_factor"] = parallelism
    if transactional_md5:
        transfer["use_transactional_md5"] = True

    try:
        cfg = ConfigManager().load(
            config_file=str(config) if config else None,
            overrides={"transfer": transfer, "logging": {"level": log_level.upper()}},
        )
    except (ValueError, FileNotFoundError) as e:
        click.echo(f"[ERROR] Invalid configuration: {e}", err=True)
        sys.exit(1)

    setup_logging(
        level=cfg.logging.level.value,
        format_type=cfg.logging.format,
        log_file=cfg.logging.file,
        module_levels=cfg.logging.module_levels,
    )

    try:
        attempts, elapsed = asyncio.run(_run_bench(cfg, size))
    except TransferError as e:
        click.echo(f"[ERROR] {e.error_code}: {e}", err=True)
        sys.exit(1)

    options = cfg.request_options()
    click.echo(f"Uploaded and verified {size} bytes")
    click.echo(f"Chunk size: {options.stream_write_size_in_bytes}, parallelism: {options.parallelism_factor}")
    click.echo(f"Attempts: {attempts}")
    click.echo(f"Elapsed: {elapsed:.3f}s")


async def _run_bench(cfg, size: int) -> tuple[int, float]:
    store = InMemoryBlockStore(limits=cfg.limits)
    await store.create_container("bench")
    client = BlockBlobClient.from_config(store, "bench", "payload", cfg)
    payload = os.urandom(size)
    context = OperationContext()

    started = time.monotonic()
    await client.upload_from_bytes(payload, context=context)
    elapsed = time.monotonic() - started

    downloaded = await client.download_to_bytes(context=context)
    if downloaded != payload:
        raise TransferError("Downloaded content differs from uploaded content", error_code="BenchMismatch")
    logger.info(f"Bench finished: {size} bytes, {context.attempt_count} attempts")
    return context.attempt_count, elapsed


class _ZeroStream:
    """Placeholder stream for planning; never read."""

    def read(self, size: int = -1) -> bytes:
        return b""

    def seekable(self) -> bool:
        return False


def main():
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
