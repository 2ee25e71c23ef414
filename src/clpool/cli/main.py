#!/usr/bin/env python3
"""
clpool CLI - Pool Engine Commands

Provides a command line interface for:
- Simulating a mint / swap / burn / collect round trip on in-memory assets
- Converting between ticks and prices
"""

from __future__ import annotations

import itertools
import json
import logging
import sys
from typing import Any, Callable, Dict, Optional

import click
from rich import box
from rich.console import Console
from rich.table import Table

from clpool.core.config import load_config
from clpool.core.defi.concentrated_liquidity import ConcentratedLiquidityFactory, ConcentratedLiquidityPool
from clpool.core.defi.safe_math import MAX_UINT128
from clpool.core.defi.tick_math import (
    encode_price_sqrt,
    get_sqrt_ratio_at_tick,
    get_tick_at_sqrt_ratio,
    sqrt_price_x96_to_price,
    tick_to_price,
)
from clpool.core.defi.token import Token
from clpool.core.exceptions import PoolError
from clpool.core.logging_config import setup_logging

logger = logging.getLogger(__name__)
console = Console()

OPERATOR = "operator"
LIQUIDITY_PROVIDER = "lp"
TRADER = "trader"
SIMULATION_START = 1_700_000_000


def _handle_cli_error(exc: Exception, exit_code: int = 1) -> None:
    logger.error("CLI error: %s", exc, extra={"event": "cli.error", "error_type": type(exc).__name__})
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(exit_code)


def _payer(pool: ConcentratedLiquidityPool, payer: str) -> Callable[[int, int, bytes], None]:
    """Callback that pays whatever the pool reports as owed from ``payer``'s balances."""

    def pay(amount0: int, amount1: int, data: bytes) -> None:
        if amount0 > 0:
            pool.token0.transfer(payer, pool.address, amount0)
        if amount1 > 0:
            pool.token1.transfer(payer, pool.address, amount1)

    return pay


def run_scenario(
    fee: int,
    liquidity: int,
    amount_in: int,
    tick_lower: Optional[int] = None,
    tick_upper: Optional[int] = None,
    cardinality: int = 1,
) -> Dict[str, Any]:
    """
    Run a full position lifecycle on a fresh pool priced at 1.

    The liquidity provider mints, a trader swaps ``amount_in`` of token0 for
    token1, then the provider burns everything and collects principal plus fees.
    """
    clock = itertools.count(SIMULATION_START).__next__
    token_a = Token(address="0x" + "aa" * 20, symbol="TKA")
    token_b = Token(address="0x" + "bb" * 20, symbol="TKB")
    factory = ConcentratedLiquidityFactory(owner=OPERATOR, address="0x" + "fa" * 20, clock=clock)
    pool = factory.create_pool(token_a, token_b, fee, initial_sqrt_price_x96=encode_price_sqrt(1, 1))

    lower = tick_lower if tick_lower is not None else -10 * pool.tick_spacing
    upper = tick_upper if tick_upper is not None else 10 * pool.tick_spacing

    if cardinality > 1:
        pool.increase_observation_cardinality_next(OPERATOR, cardinality)

    supply = MAX_UINT128
    for token in (pool.token0, pool.token1):
        token.mint(LIQUIDITY_PROVIDER, supply)
        token.mint(TRADER, supply)

    minted = pool.mint(LIQUIDITY_PROVIDER, LIQUIDITY_PROVIDER, lower, upper, liquidity, _payer(pool, LIQUIDITY_PROVIDER))
    swapped = pool.swap(TRADER, TRADER, True, amount_in, None, _payer(pool, TRADER))
    burned = pool.burn(LIQUIDITY_PROVIDER, lower, upper, liquidity)
    collected = pool.collect(LIQUIDITY_PROVIDER, LIQUIDITY_PROVIDER, lower, upper, MAX_UINT128, MAX_UINT128)

    return {
        "pool": pool.get_pool_state(),
        "range": {"tick_lower": lower, "tick_upper": upper, "liquidity": liquidity},
        "mint": {"amount0": minted[0], "amount1": minted[1]},
        "swap": {"amount0": swapped[0], "amount1": swapped[1]},
        "burn": {"amount0": burned[0], "amount1": burned[1]},
        "collect": {"amount0": collected[0], "amount1": collected[1]},
        "lp_net": {
            "token0": pool.token0.balance_of(LIQUIDITY_PROVIDER) - supply,
            "token1": pool.token1.balance_of(LIQUIDITY_PROVIDER) - supply,
        },
        "pool_balances": {
            "token0": pool.token0.balance_of(pool.address),
            "token1": pool.token1.balance_of(pool.address),
        },
        "events": [event.name for event in pool.events],
    }


@click.group()
@click.option("--log-level", default=None, help="Override CLPOOL_LOG_LEVEL")
@click.option("--json-logs", is_flag=True, help="Emit structured JSON logs to stderr")
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str], json_logs: bool):
    """Concentrated liquidity pool engine."""
    ctx.ensure_object(dict)
    try:
        config = load_config()
    except PoolError as exc:
        _handle_cli_error(exc)
    ctx.obj["config"] = config
    if json_logs or config.log_file:
        setup_logging(
            name="clpool",
            log_file=config.log_file,
            level=log_level or config.log_level,
            environment=config.environment,
            enable_console=json_logs,
        )


@cli.command("simulate")
@click.option("--fee", type=int, default=None, help="Fee tier in hundredths of a bip (default CLPOOL_DEFAULT_FEE)")
@click.option("--liquidity", type=int, default=10**18, show_default=True, help="Liquidity to provide")
@click.option("--tick-lower", type=int, default=None, help="Lower tick (default -10 spacings)")
@click.option("--tick-upper", type=int, default=None, help="Upper tick (default +10 spacings)")
@click.option("--amount-in", type=int, default=10**15, show_default=True, help="Exact token0 input to swap")
@click.option("--cardinality", type=int, default=1, show_default=True, help="Oracle cardinality to grow to")
@click.option("--json", "json_output", is_flag=True, help="Output raw JSON")
@click.pass_context
def simulate(
    ctx: click.Context,
    fee: Optional[int],
    liquidity: int,
    tick_lower: Optional[int],
    tick_upper: Optional[int],
    amount_in: int,
    cardinality: int,
    json_output: bool,
):
    """Simulate mint, swap, burn and collect on a fresh pool."""
    config = ctx.obj["config"]
    if cardinality > config.max_observation_cardinality:
        raise click.BadParameter(
            f"must not exceed {config.max_observation_cardinality}", param_hint="--cardinality"
        )

    try:
        result = run_scenario(
            fee=config.default_fee if fee is None else fee,
            liquidity=liquidity,
            amount_in=amount_in,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            cardinality=cardinality,
        )
    except PoolError as exc:
        _handle_cli_error(exc)
        return

    if json_output:
        click.echo(json.dumps(result, indent=2))
        return

    state = result["pool"]
    pool_table = Table(title="Pool State", box=box.ROUNDED)
    pool_table.add_column("Field", style="cyan")
    pool_table.add_column("Value", style="white", overflow="fold")
    for field_name in ("address", "fee", "tick_spacing", "sqrt_price_x96", "tick", "price", "liquidity"):
        pool_table.add_row(field_name, str(state[field_name]))
    pool_table.add_row("protocol_fees", f"{state['protocol_fees_0']} / {state['protocol_fees_1']}")
    console.print(pool_table)

    flow_table = Table(title="Token Flows (pool perspective)", box=box.ROUNDED)
    flow_table.add_column("Step", style="cyan")
    flow_table.add_column("Token0", style="green", justify="right", overflow="fold")
    flow_table.add_column("Token1", style="yellow", justify="right", overflow="fold")
    for step in ("mint", "swap", "burn", "collect"):
        flow_table.add_row(step, str(result[step]["amount0"]), str(result[step]["amount1"]))
    flow_table.add_row("lp net", str(result["lp_net"]["token0"]), str(result["lp_net"]["token1"]))
    console.print(flow_table)


@cli.command("tick-to-price")
@click.argument("tick", type=int)
def tick_to_price_command(tick: int):
    """Show the sqrt price and price at TICK."""
    try:
        sqrt_price_x96 = get_sqrt_ratio_at_tick(tick)
    except PoolError as exc:
        _handle_cli_error(exc)
        return

    table = Table(title=f"Tick {tick}", box=box.SIMPLE)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white", overflow="fold")
    table.add_row("sqrt_price_x96", str(sqrt_price_x96))
    table.add_row("price", f"{tick_to_price(tick):.12g}")
    console.print(table)


@cli.command("price-to-tick")
@click.argument("sqrt_price_x96", type=int)
def price_to_tick_command(sqrt_price_x96: int):
    """Show the tick containing SQRT_PRICE_X96."""
    try:
        tick = get_tick_at_sqrt_ratio(sqrt_price_x96)
    except PoolError as exc:
        _handle_cli_error(exc)
        return

    table = Table(title="Price To Tick", box=box.SIMPLE)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white", overflow="fold")
    table.add_row("tick", str(tick))
    table.add_row("price", f"{sqrt_price_x96_to_price(sqrt_price_x96):.12g}")
    console.print(table)


def main():
    """Main CLI entry point"""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        sys.exit(130)


if __name__ == "__main__":
    main()
