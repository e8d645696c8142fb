"""
Default shock scenarios, plus loading extra ones from config.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from .schema import ShockParameter, ShockScenario, ShockScope, ShockType

BTC_CRASH = ShockScenario(
    scenario_id="btc_crash",
    name="BTC Flash Crash (-10%)",
    parameters=(
        ShockParameter(ShockType.SPOT_PCT, ShockScope.ASSET, Decimal("-10"), target="BTC", param_id="1"),
    ),
)

FUNDING_SPIKE = ShockScenario(
    scenario_id="funding_spike",
    name="Funding Spike (+100bps)",
    parameters=(
        ShockParameter(ShockType.FUNDING_ABS, ShockScope.GLOBAL, Decimal("0.01"), param_id="1"),
    ),
)

# The second parameter is a no-op on BTC: it documents that BTC is meant to be
# held flat, but the -20% global move has already been applied to it.
ALT_BLOODBATH = ShockScenario(
    scenario_id="alt_bloodbath",
    name="Altcoin Panic (-20%)",
    parameters=(
        ShockParameter(ShockType.SPOT_PCT, ShockScope.GLOBAL, Decimal("-20"), param_id="1"),
        ShockParameter(ShockType.SPOT_PCT, ShockScope.ASSET, Decimal("0"), target="BTC", param_id="2"),
    ),
)

DEFAULT_SCENARIOS: List[ShockScenario] = [BTC_CRASH, FUNDING_SPIKE, ALT_BLOODBATH]


def default_scenarios() -> Dict[str, ShockScenario]:
    return {s.scenario_id: s for s in DEFAULT_SCENARIOS}


def load_scenarios(data: Optional[Dict[str, Any]] = None) -> Dict[str, ShockScenario]:
    """Defaults merged with a config 'scenarios' list (config wins on id clash)."""
    scenarios = default_scenarios()
    for item in (data or {}).get("scenarios") or []:
        scenario = ShockScenario.from_dict(item)
        scenarios[scenario.scenario_id] = scenario
    return scenarios
