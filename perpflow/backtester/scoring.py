"""
Result validation: is this backtest trustworthy evidence?

A run is scored out of 100.  Hard problems become ``RedFlag`` entries, soft
ones become ``ValidationWarning`` entries; both also cost points::

    Sharpe  > max_sharpe          red flag   -20
    Sharpe  < min_sharpe          warning    -10
    win rate > max_win_rate       red flag   -20
    win rate < min_win_rate       warning    -10
    trades  < min_trades          red flag   -25
    drawdown > max_drawdown       red flag   -15
    PF      < min_profit_factor   red flag   -15
    any regime failing            red flag   -20
    concentrated wins             red flag   -15

``passed`` requires no red flag **and** a score of at least 70.  Red flags
are values, never exceptions.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import List, Optional, Tuple, TYPE_CHECKING

from perpflow import configuration as cfg
from perpflow.backtester.metrics import BacktestMetrics

if TYPE_CHECKING:
    from perpflow.backtester.stress import StressTestResults
    from perpflow.backtester.walk_forward import WalkForwardResult


class RedFlag(enum.Enum):
    SHARPE_TOO_HIGH       = "Sharpe ratio > 3.0 (suspected overfitting)"
    WIN_RATE_TOO_HIGH     = "Win rate > 65% (unrealistic)"
    INSUFFICIENT_TRADES   = "Fewer than 100 trades (insufficient sample)"
    REGIME_FAILURE        = "Fails in at least one market regime (bull/bear/sideways)"
    TRAIN_TEST_DIVERGENCE = "Train/test difference > 30%"
    COST_SENSITIVITY      = "Fails with 2x costs"
    CONCENTRATED_WINS     = "Largest win is more than 50% of total profit"
    NO_STRESS_SURVIVAL    = "Does not survive a flash crash or extreme funding"
    MAX_DRAWDOWN_TOO_HIGH = "Max drawdown > 20%"
    LOW_PROFIT_FACTOR     = "Profit factor < 1.5"


class Severity(enum.Enum):
    LOW    = "low"
    MEDIUM = "medium"
    HIGH   = "high"


@dataclass(frozen=True, slots=True)
class ValidationWarning:
    type: str
    message: str
    severity: Severity = Severity.MEDIUM


@dataclass(frozen=True, slots=True)
class ValidationThresholds:
    """Sanity bounds for a day-trading profile."""
    min_sharpe: float = cfg.MIN_SHARPE
    max_sharpe: float = cfg.MAX_SHARPE
    min_win_rate: float = cfg.MIN_WIN_RATE
    max_win_rate: float = cfg.MAX_WIN_RATE
    max_drawdown: float = cfg.MAX_DRAWDOWN
    min_profit_factor: float = cfg.MIN_PROFIT_FACTOR
    min_trades: int = cfg.MIN_TRADES
    max_train_test_diff: float = cfg.MAX_TRAIN_TEST_DIFF
    regime_min_trades: int = cfg.REGIME_MIN_TRADES
    regime_min_profit_factor: float = cfg.REGIME_MIN_PF
    concentration_share: float = cfg.CONCENTRATION_SHARE
    passing_score: int = cfg.PASSING_SCORE


@dataclass(frozen=True, slots=True)
class ValidationResult:
    passed: bool
    red_flags: Tuple[RedFlag, ...] = ()
    warnings: Tuple[ValidationWarning, ...] = ()
    score: int = 100

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "red_flags": [flag.name for flag in self.red_flags],
            "warnings": [
                {"type": w.type, "message": w.message, "severity": w.severity.value}
                for w in self.warnings
            ],
            "score": self.score,
        }


def validate_results(
    metrics: BacktestMetrics,
    thresholds: ValidationThresholds = ValidationThresholds(),
) -> ValidationResult:
    """Score ``metrics`` against ``thresholds``."""
    red_flags: List[RedFlag] = []
    warnings: List[ValidationWarning] = []
    score = 100

    # --- Sharpe ---
    if metrics.sharpe_ratio > thresholds.max_sharpe:
        red_flags.append(RedFlag.SHARPE_TOO_HIGH)
        score -= 20
    elif metrics.sharpe_ratio < thresholds.min_sharpe:
        warnings.append(ValidationWarning(
            type="LOW_SHARPE",
            message=f"Sharpe ratio {metrics.sharpe_ratio:.2f} is below recommended {thresholds.min_sharpe}",
        ))
        score -= 10

    # --- Win rate ---
    if metrics.win_rate > thresholds.max_win_rate:
        red_flags.append(RedFlag.WIN_RATE_TOO_HIGH)
        score -= 20
    elif metrics.win_rate < thresholds.min_win_rate:
        warnings.append(ValidationWarning(
            type="LOW_WIN_RATE",
            message=(
                f"Win rate {metrics.win_rate * 100:.1f}% is below recommended "
                f"{thresholds.min_win_rate * 100:.0f}%"
            ),
        ))
        score -= 10

    # --- Sample size, drawdown, profit factor ---
    if metrics.total_trades < thresholds.min_trades:
        red_flags.append(RedFlag.INSUFFICIENT_TRADES)
        score -= 25

    if metrics.max_drawdown_percent > thresholds.max_drawdown:
        red_flags.append(RedFlag.MAX_DRAWDOWN_TOO_HIGH)
        score -= 15

    if metrics.profit_factor < thresholds.min_profit_factor:
        red_flags.append(RedFlag.LOW_PROFIT_FACTOR)
        score -= 15

    # --- Regimes ---
    failing = [
        stats for stats in metrics.regime_performance.values()
        if stats.total_trades > thresholds.regime_min_trades
        and stats.profit_factor < thresholds.regime_min_profit_factor
    ]
    if failing:
        red_flags.append(RedFlag.REGIME_FAILURE)
        score -= 20

    # --- Concentration ---
    if (metrics.largest_win > metrics.total_pnl * thresholds.concentration_share
            and metrics.total_trades > thresholds.regime_min_trades):
        red_flags.append(RedFlag.CONCENTRATED_WINS)
        score -= 15

    score = max(0, score)
    return ValidationResult(
        passed=not red_flags and score >= thresholds.passing_score,
        red_flags=tuple(red_flags),
        warnings=tuple(warnings),
        score=score,
    )


def apply_robustness_checks(
    validation: ValidationResult,
    stress: Optional["StressTestResults"] = None,
    walk_forward: Optional["WalkForwardResult"] = None,
) -> ValidationResult:
    """
    Fold stress-test and walk-forward outcomes into an existing verdict.

    Adds ``COST_SENSITIVITY`` when the doubled-cost scenario fails,
    ``NO_STRESS_SURVIVAL`` when any market-shock scenario fails and
    ``TRAIN_TEST_DIVERGENCE`` when walk-forward windows are inconsistent.
    The score is left untouched; ``passed`` is recomputed.
    """
    red_flags = list(validation.red_flags)

    if stress is not None:
        for test in stress.tests:
            if test.passed:
                continue
            flag = RedFlag.COST_SENSITIVITY if test.name.startswith("Costs") else RedFlag.NO_STRESS_SURVIVAL
            if flag not in red_flags:
                red_flags.append(flag)

    if walk_forward is not None and not walk_forward.consistent:
        if RedFlag.TRAIN_TEST_DIVERGENCE not in red_flags:
            red_flags.append(RedFlag.TRAIN_TEST_DIVERGENCE)

    return ValidationResult(
        passed=validation.passed and not red_flags,
        red_flags=tuple(red_flags),
        warnings=validation.warnings,
        score=validation.score,
    )
