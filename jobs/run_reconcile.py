#!/usr/bin/env python3
"""
jobs/run_reconcile.py - CLI entrypoint for ledger reconciliation.

Recovers on-chain stakes missing from the ledger for the given wallets,
once or on a fixed interval.

Usage:
    python -m jobs.run_reconcile --wallet 0xabc... --once
    python -m jobs.run_reconcile -w 0xabc... -w 0xdef... --interval 300
    python -m jobs.run_reconcile -w 0xabc... --chain POLYGON_AMOY --once
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

import click

from config.settings import load_settings
from core.logging import get_logger, set_global_context, setup_logging
from orchestrator.context import OrchestratorContext
from utils.validators import is_valid_address

logger = get_logger("kiln.reconcile")

_shutdown_requested = False


def handle_shutdown(signum: int, frame: object) -> None:
    """Handle shutdown signals."""
    global _shutdown_requested
    logger.info("Shutdown requested", extra={"context": {"signal": signum}})
    _shutdown_requested = True


async def _sleep_until_shutdown(seconds: float, step: float = 0.5) -> None:
    # Short slices so a signal is honoured without waiting out the interval
    loop = asyncio.get_running_loop()
    deadline = loop.time() + seconds
    while not _shutdown_requested:
        remaining = deadline - loop.time()
        if remaining <= 0:
            return
        await asyncio.sleep(min(step, remaining))


async def run_cycle(
    ctx: OrchestratorContext,
    wallets: Sequence[str],
    chain_keys: Optional[Sequence[str]],
) -> dict:
    """Reconcile every wallet once. Returns per-wallet report dicts."""
    reports = {}
    for wallet in wallets:
        if _shutdown_requested:
            break
        result = await ctx.recover_missing(wallet, chain_keys)
        reports[wallet] = result.to_dict()
        if result.success:
            report = result.data
            logger.info(
                f"{wallet}: {len(report.recovered)} recovered, {len(report.skipped_chains)} chains skipped",
                extra={"context": {"recovered": report.recovered, "skipped": report.skipped_chains}},
            )
    return reports


async def reconcile_loop(
    ctx: OrchestratorContext,
    wallets: Sequence[str],
    chain_keys: Optional[Sequence[str]],
    interval_seconds: float,
    max_cycles: Optional[int] = None,
) -> int:
    """Run cycles until shutdown (or max_cycles). Returns the number of cycles."""
    cycle = 0
    while not _shutdown_requested:
        cycle += 1
        logger.info(f"=== Reconcile Cycle {cycle} ===")
        await run_cycle(ctx, wallets, chain_keys)
        if max_cycles is not None and cycle >= max_cycles:
            break
        await _sleep_until_shutdown(interval_seconds)
    logger.info("Reconcile loop terminated", extra={"context": {"cycles": cycle}})
    return cycle


@click.command()
@click.option("--wallet", "-w", "wallets", multiple=True, required=True, help="Wallet address (repeatable)")
@click.option("--chain", "-c", "chains", multiple=True, help="Chain key (repeatable, default: all with a stake contract)")
@click.option("--interval", "-i", default=300.0, help="Seconds between cycles")
@click.option("--once", is_flag=True, help="Run a single cycle and exit")
@click.option("--config-dir", type=click.Path(exists=True, file_okay=False, path_type=Path), default=None)
@click.option("--log-level", "-l", default=None, type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]))
@click.option("--json-logs/--no-json-logs", default=None)
def main(
    wallets: tuple[str, ...],
    chains: tuple[str, ...],
    interval: float,
    once: bool,
    config_dir: Optional[Path],
    log_level: Optional[str],
    json_logs: Optional[bool],
) -> None:
    """Recover on-chain stakes missing from the ledger."""
    settings = load_settings(config_dir)
    setup_logging(
        level=log_level or settings.log_level,
        json_output=settings.log_json if json_logs is None else json_logs,
    )
    set_global_context(service="kiln-reconcile", version="0.1.0")

    invalid = [w for w in wallets if not is_valid_address(w)]
    if invalid:
        raise click.BadParameter(f"Invalid wallet address: {', '.join(invalid)}", param_hint="--wallet")

    chain_keys = list(chains) or None
    logger.info(
        "Starting reconciler",
        extra={"context": {"wallets": len(wallets), "chains": chain_keys, "once": once, "interval": interval}},
    )

    async def run():
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, handle_shutdown, signum, None)
        ctx = await OrchestratorContext.build(settings=settings, config_dir=config_dir)
        try:
            if once:
                await run_cycle(ctx, wallets, chain_keys)
            else:
                await reconcile_loop(ctx, wallets, chain_keys, interval)
        finally:
            await ctx.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Reconciler interrupted")
    except Exception as e:
        logger.error(f"Reconciler error: {e}", exc_info=True)
        sys.exit(1)

    logger.info("Reconciler stopped")


if __name__ == "__main__":
    main()
