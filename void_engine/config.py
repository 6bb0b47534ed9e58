"""
void_engine/config.py — Engine configuration
==============================================
Every tuning constant of the analysis pipeline lives here, once.

The blend ratios and trap/sharp thresholds below are hand-tuned values carried
over unchanged from the production engine. They are exposed as overridable
fields on EngineConfig so that recalibration against Pattern Memory win rates
can replace them without touching the formulas.

Usage:
    from void_engine.config import EngineConfig
    cfg = EngineConfig()                 # defaults
    cfg = EngineConfig.from_env()        # VOID_* environment overrides
    cfg = EngineConfig(sim_count=2000)   # explicit override

DO NOT read os.environ anywhere else in the package.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
DEFAULT_DB_PATH: str = str(Path(__file__).parent.parent / "data" / "void_engine.db")

# ---------------------------------------------------------------------------
# Mode
# ---------------------------------------------------------------------------
MODE_PRE_MATCH: str = "pre_match"
DEFAULT_MODE: str = MODE_PRE_MATCH

# ---------------------------------------------------------------------------
# Adaptive Signal Store (EWMA)
# ---------------------------------------------------------------------------
EWMA_DEFAULT_SMOOTHING: float = 0.08
EWMA_SMOOTHING_BY_KEY: dict[str, float] = {
    "net_flow":    0.08,
    "void_score":  0.06,
    "smart_money": 0.10,
    "sync_score":  0.20,
    "tpo_home":    0.15,
    "tpo_draw":    0.15,
    "tpo_away":    0.15,
}

# ---------------------------------------------------------------------------
# Disparity Engine
# ---------------------------------------------------------------------------
DISPARITY_LABEL_THRESHOLD: float = 0.03   # |delta| above this gets a backed label

# ---------------------------------------------------------------------------
# Smart-Money Classifier
# ---------------------------------------------------------------------------
SMC_WEIGHT_JUICE: float = 0.5
SMC_WEIGHT_STACK: float = 0.3
SMC_WEIGHT_SYNC: float = 0.4
SMC_WEIGHT_DIVERGENCE: float = 0.4       # subtracted
SMC_DIVERGENCE_SCALE: float = 0.3        # divergence at which the penalty saturates
SMC_SMART_THRESHOLD: float = 0.70
SMC_MIXED_THRESHOLD: float = 0.45

PRESSURE_FLAG_THRESHOLD: float = 0.2     # normalised pressure for trap/sharp flags
STACK_LOW_THRESHOLD: float = 0.25        # trap: stacking below this
STACK_HIGH_THRESHOLD: float = 0.4        # sharp: stacking above this
PRESSURE_NORM_MAX: float = 10.0

# Hours-to-kickoff weighting of price pressure
LATE_WEIGHT_HOURS: float = 2.0
LATE_WEIGHT: float = 1.5
DAY_WEIGHT_HOURS: float = 24.0
DAY_WEIGHT: float = 1.1
EARLY_WEIGHT: float = 0.9
DEFAULT_HOURS_TO_KICKOFF: float = 48.0

# ---------------------------------------------------------------------------
# Probability Model
# ---------------------------------------------------------------------------
TPO_DEFAULT_MARGIN: float = 0.06         # used when the book shows no overround
SIM_COUNT: int = 800
SIM_COUNT_MIN: int = 100
SIM_COUNT_MAX: int = 2000
BASE_GOAL_RATE: float = 1.15             # goals per side at even strength
STRENGTH_SCALE: float = 0.45             # goals per unit of ln(p_home/p_away)
MIN_GOAL_RATE: float = 0.15
BLEND_SIM: float = 0.6
BLEND_TPO: float = 0.2
BLEND_MARKET: float = 0.2

# ---------------------------------------------------------------------------
# Closing-Edge Projector / Equilibrium
# ---------------------------------------------------------------------------
PROJECT_SHARP_FRACTION: float = 0.5
PROJECT_DRIFT_FRACTION: float = 0.15
PROJECT_TRAP_FRACTION: float = -0.35
EQUILIBRIUM_HIST_WEIGHT: float = 0.6
EQUILIBRIUM_SHIFT_THRESHOLD: float = 0.03

# ---------------------------------------------------------------------------
# Alerts / verdict
# ---------------------------------------------------------------------------
CONTRADICTION_SEVERITY_MIN: float = 0.35
REBOUND_SENS_MIN: float = 0.03
TRAP_DIVERGENCE_THRESHOLD: float = 0.12

# ---------------------------------------------------------------------------
# Autotune
# ---------------------------------------------------------------------------
AUTOTUNE_ENABLED: bool = True
AUTOTUNE_MIN_CASES: int = 30
AUTOTUNE_SMOOTHING_STEP: float = 0.01
AUTOTUNE_KEY: str = "smart_money"


@dataclass
class EngineConfig:
    """
    Explicit configuration passed into every component constructor.

    Field defaults mirror the module constants above. Weights and thresholds
    are tuning values, not derived quantities; change them only against
    recorded outcome data.
    """
    db_path: str = DEFAULT_DB_PATH
    mode: str = DEFAULT_MODE

    ewma_default_smoothing: float = EWMA_DEFAULT_SMOOTHING
    ewma_smoothing_by_key: dict[str, float] = field(
        default_factory=lambda: dict(EWMA_SMOOTHING_BY_KEY)
    )

    disparity_label_threshold: float = DISPARITY_LABEL_THRESHOLD

    smc_weight_juice: float = SMC_WEIGHT_JUICE
    smc_weight_stack: float = SMC_WEIGHT_STACK
    smc_weight_sync: float = SMC_WEIGHT_SYNC
    smc_weight_divergence: float = SMC_WEIGHT_DIVERGENCE
    smc_divergence_scale: float = SMC_DIVERGENCE_SCALE
    smc_smart_threshold: float = SMC_SMART_THRESHOLD
    smc_mixed_threshold: float = SMC_MIXED_THRESHOLD
    pressure_flag_threshold: float = PRESSURE_FLAG_THRESHOLD
    stack_low_threshold: float = STACK_LOW_THRESHOLD
    stack_high_threshold: float = STACK_HIGH_THRESHOLD

    tpo_default_margin: float = TPO_DEFAULT_MARGIN
    sim_count: int = SIM_COUNT
    base_goal_rate: float = BASE_GOAL_RATE
    strength_scale: float = STRENGTH_SCALE
    min_goal_rate: float = MIN_GOAL_RATE
    blend_sim: float = BLEND_SIM
    blend_tpo: float = BLEND_TPO
    blend_market: float = BLEND_MARKET

    project_sharp_fraction: float = PROJECT_SHARP_FRACTION
    project_drift_fraction: float = PROJECT_DRIFT_FRACTION
    project_trap_fraction: float = PROJECT_TRAP_FRACTION
    equilibrium_shift_threshold: float = EQUILIBRIUM_SHIFT_THRESHOLD

    contradiction_severity_min: float = CONTRADICTION_SEVERITY_MIN
    rebound_sens_min: float = REBOUND_SENS_MIN
    trap_divergence_threshold: float = TRAP_DIVERGENCE_THRESHOLD

    autotune_enabled: bool = AUTOTUNE_ENABLED
    autotune_min_cases: int = AUTOTUNE_MIN_CASES
    autotune_step: float = AUTOTUNE_SMOOTHING_STEP

    sim_seed: int | None = None

    def smoothing_for(self, key: str) -> float:
        """Configured smoothing factor for a signal key, else the global default."""
        return float(self.ewma_smoothing_by_key.get(key, self.ewma_default_smoothing))

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "EngineConfig":
        """
        Build a config from VOID_<FIELD> environment variables.

        Only scalar fields are read. Values that fail to parse are ignored
        with a warning and the default is kept.

        >>> EngineConfig.from_env({"VOID_SIM_COUNT": "1200"}).sim_count
        1200
        >>> EngineConfig.from_env({"VOID_SIM_COUNT": "lots"}).sim_count
        800
        """
        env = os.environ if environ is None else environ
        overrides: dict = {}
        for f in fields(cls):
            raw = env.get(f"VOID_{f.name.upper()}")
            if raw is None:
                continue
            default = f.default
            try:
                if isinstance(default, bool):
                    overrides[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
                elif isinstance(default, int):
                    overrides[f.name] = int(raw)
                elif isinstance(default, float):
                    overrides[f.name] = float(raw)
                elif isinstance(default, str):
                    overrides[f.name] = raw
                elif f.name == "sim_seed":
                    overrides[f.name] = int(raw)
            except ValueError:
                logger.warning("Ignoring unparseable VOID_%s=%r", f.name.upper(), raw)
        return cls(**overrides)
