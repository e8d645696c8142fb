"""
Report frames - flatten live positions and risk trees into pandas DataFrames

Trees (RiskNode, ShockResultNode) are walked depth-first; every node becomes
one row with its depth and parent id so the frame can be re-nested or
filtered by level (e.g. df[df.node_type == "ASSET"]).
"""

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from .schema import LivePosition

POSITION_COLUMNS = [
    "position_id",
    "base_asset",
    "symbol",
    "venue",
    "strategy_id",
    "trader_id",
    "side",
    "quantity",
    "avg_entry_price",
    "mark_price",
    "notional_usd",
    "unrealized_pnl",
    "pnl_percent",
    "is_stale",
]


def _as_float(value: Any) -> Any:
    return float(value) if isinstance(value, Decimal) else value


def positions_to_frame(positions: Iterable[LivePosition]) -> pd.DataFrame:
    """One row per live position, Decimal amounts converted to float."""
    rows = []
    for p in positions:
        rows.append({
            "position_id": p.position_id,
            "base_asset": p.base_asset,
            "symbol": p.symbol,
            "venue": p.venue,
            "strategy_id": p.strategy_id,
            "trader_id": p.trader_id,
            "side": p.side.value,
            "quantity": float(p.quantity),
            "avg_entry_price": float(p.avg_entry_price),
            "mark_price": float(p.mark_price),
            "notional_usd": float(p.notional_usd),
            "unrealized_pnl": float(p.unrealized_pnl),
            "pnl_percent": p.pnl_percent,
            "is_stale": p.is_stale,
        })
    return pd.DataFrame(rows, columns=POSITION_COLUMNS)


def tree_to_frame(root: Any) -> pd.DataFrame:
    """
    Flatten a node tree into a DataFrame.

    Works for any node exposing `node_id`, `children` and `to_row()`.
    """
    rows: List[Dict[str, Any]] = []

    def visit(node: Any, depth: int, parent_id: Optional[str]) -> None:
        row = {key: _as_float(value) for key, value in node.to_row().items()}
        row["depth"] = depth
        row["parent_id"] = parent_id
        rows.append(row)
        for child in node.children:
            visit(child, depth + 1, node.node_id)

    visit(root, 0, None)
    return pd.DataFrame(rows)


def exposure_by(positions: Iterable[LivePosition], column: str) -> pd.DataFrame:
    """
    Gross/net notional and PnL aggregated on one position column.

    Example:
        exposure_by(snapshot.positions, "venue")
    """
    df = positions_to_frame(positions)
    if df.empty:
        return pd.DataFrame(columns=[column, "gross_usd", "net_usd", "unrealized_pnl"])

    df["signed_usd"] = df["notional_usd"].where(df["side"] == "LONG", -df["notional_usd"])
    grouped = df.groupby(column, dropna=False).agg(
        gross_usd=("notional_usd", "sum"),
        net_usd=("signed_usd", "sum"),
        unrealized_pnl=("unrealized_pnl", "sum"),
    )
    return grouped.reset_index().sort_values("gross_usd", ascending=False, ignore_index=True)
