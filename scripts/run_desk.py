#!/usr/bin/env python3
"""
Demo: Desk Exposure & Risk Core

Loads the demo delta-neutral book, drives it with a synthetic price feed,
sends a few orders through the pre-trade gate and prints:
- live positions and desk metrics
- the Desk -> Strategy -> Trader -> Asset -> Venue risk tree
- every default shock scenario

Run: python scripts/run_desk.py --duration 3
     python scripts/run_desk.py --config config.yaml
"""

import argparse
import asyncio
import logging
import os
import random
import sys
from decimal import Decimal
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pandas as pd
from dotenv import load_dotenv

from deskrisk import DeskConfig, DeskContext
from deskrisk.config import CONFIG_ENV_VAR, LOG_LEVEL_ENV_VAR
from deskrisk.demo import DEMO_PRICES, build_demo_desk, seed_positions
from deskrisk.execution import OrderRequest, Side
from deskrisk.portfolio import exposure_by, positions_to_frame, tree_to_frame

logger = logging.getLogger(__name__)


async def synthetic_feed(desk: DeskContext, stop: asyncio.Event, seed: int = 42) -> None:
    """Random-walk the demo prices into the price cache every 100ms."""
    rng = random.Random(seed)
    state = {symbol: list(quote) for symbol, quote in DEMO_PRICES.items()}

    while not stop.is_set():
        for symbol, (bid, ask, mark, funding) in state.items():
            move = Decimal(str(rng.gauss(0, 0.0005)))
            bid = bid * (1 + move) if bid is not None else None
            ask = ask * (1 + move) if ask is not None else None
            mark = mark * (1 + move) if mark is not None else None
            state[symbol] = [bid, ask, mark, funding]
            desk.update_price(symbol, bid=bid, ask=ask, mark=mark, funding_rate=funding)
        try:
            await asyncio.wait_for(stop.wait(), timeout=0.1)
        except asyncio.TimeoutError:
            pass


def send_demo_orders(desk: DeskContext) -> None:
    orders = [
        # Within limits
        OrderRequest(symbol="BTCUSDT", venue="SPOT", side=Side.LONG, quantity=Decimal("0.5"),
                     strategy_id="ARB_DELTA_NEUTRAL", trader_id="ALICE"),
        # Paused strategy, also blocked on SOLUSDT
        OrderRequest(symbol="SOLUSDT", venue="PERP_USDT", side=Side.SHORT, quantity=Decimal("100"),
                     strategy_id="TREND_FOLLOW", trader_id="BOB"),
        # Unregistered strategy, breaches the BTC symbol limit
        OrderRequest(symbol="BTCUSDT", venue="PERP_USDT", side=Side.SHORT, quantity=Decimal("40"),
                     strategy_id="MANUAL", trader_id="CAROL"),
    ]
    for request in orders:
        submission = desk.submit_order(request, user=request.trader_id)
        status = "ACCEPTED" if submission.accepted else "REFUSED"
        detail = submission.reason or "all checks passed"
        print(f"  {status:8} {request.side.value:5} {request.quantity} {request.symbol} "
              f"on {request.venue} [{request.strategy_id}] - {detail}")


def print_report(desk: DeskContext) -> None:
    pd.set_option("display.width", 200)
    pd.set_option("display.max_columns", 20)

    snapshot = desk.get_snapshot()
    print("\n" + "=" * 70)
    print(f"POSITIONS (valuation v{snapshot.version})")
    print("=" * 70)
    print(positions_to_frame(snapshot.positions).drop(columns=["position_id"]).to_string(index=False))

    print("\nEXPOSURE BY VENUE")
    print(exposure_by(snapshot.positions, "venue").to_string(index=False))

    metrics = snapshot.metrics
    print("\nDESK METRICS")
    print(f"  Equity:     ${metrics.total_equity:,.2f}")
    print(f"  Unrealized: ${metrics.total_pnl:,.2f}")
    print(f"  Net delta:  ${metrics.net_delta_usd:,.2f}")
    print(f"  Gross:      ${metrics.gross_exposure:,.2f}")
    print(f"  Leverage:   {metrics.leverage:.2f}x")
    for carry in snapshot.carry:
        print(f"  Carry {carry.base_asset}: basis {carry.basis_bps:.1f} bps, "
              f"funding APR {carry.funding_apr:.2f}%")

    tree = desk.get_tree()
    if tree is not None:
        print("\n" + "=" * 70)
        print("RISK TREE")
        print("=" * 70)
        df = tree_to_frame(tree)
        df["node"] = df["depth"].map(lambda d: "  " * d) + df["name"]
        print(df[["node", "node_type", "gross_exposure_usd", "limit_usd",
                  "utilization", "is_breached", "is_blocked"]].to_string(index=False))

    print("\n" + "=" * 70)
    print("SHOCK SCENARIOS")
    print("=" * 70)
    for scenario_id, scenario in desk.scenarios.items():
        result = desk.run_shock(scenario)
        print(f"\n{scenario.name} [{scenario_id}]: delta PnL ${result.shock_delta_pnl:,.2f}")
        df = tree_to_frame(result)
        print(df[["name", "node_type", "shock_delta_pnl", "shock_utilization",
                  "is_breached", "is_margin_call"]].to_string(index=False))


async def main_async() -> None:
    parser = argparse.ArgumentParser(description="Desk exposure & risk core demo")
    parser.add_argument("--config", type=str, default=None,
                        help="YAML desk config (default: $DESKRISK_CONFIG or the built-in demo book)")
    parser.add_argument("--duration", type=float, default=2.0, help="Seconds to run the live loop")
    parser.add_argument("--seed", type=int, default=42, help="Seed for prices and slippage")
    args = parser.parse_args()

    config_path = args.config or os.getenv(CONFIG_ENV_VAR)
    if config_path:
        desk = DeskContext.from_yaml(config_path, seed_positions=seed_positions())
        for symbol, (bid, ask, mark, funding) in DEMO_PRICES.items():
            desk.update_price(symbol, bid=bid, ask=ask, mark=mark, funding_rate=funding)
    else:
        desk = build_demo_desk(DeskConfig(fill_delay_seconds=0.2, slippage_seed=args.seed))

    stop = asyncio.Event()
    feed = asyncio.create_task(synthetic_feed(desk, stop, seed=args.seed))
    runner = asyncio.create_task(desk.run())

    await asyncio.sleep(0.5)
    print("\nORDERS")
    send_demo_orders(desk)

    await asyncio.sleep(args.duration)
    desk.shutdown()
    stop.set()
    await asyncio.gather(feed, runner)

    desk.tick()
    print_report(desk)


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=os.getenv(LOG_LEVEL_ENV_VAR, "INFO").upper(),
        format="%(asctime)s | %(levelname)s | %(message)s"
    )
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
