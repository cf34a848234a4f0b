# Typically, a configuration file for a perpetual-futures backtest includes the following information:
#
#     - Candle Intervals: The nominal spacing of the bars the simulation clock steps through.
#     Gap filling and holding-time maths depend on it, so every supported interval is mapped
#     to its length in milliseconds.
#
#     - Risk Defaults: Starting capital, position size as a percentage of equity, leverage,
#     stop loss / take profit percentages and the maximum number of concurrent positions.
#
#     - Cost Defaults: Exchange fees, the conservative fee multiplier, slippage parameters and
#     the funding posture. These are deliberately pessimistic; the validation thresholds below
#     are calibrated against results produced under this bias.
#
#     - Validation Thresholds: The sanity bounds a backtest result is scored against before it
#     is accepted as evidence of a viable strategy.


MS_PER_HOUR            = 60 * 60 * 1000
MS_PER_DAY             = 24 * MS_PER_HOUR

INTERVAL_MS            = {'15m': 15 * 60 * 1000,
                          '1h':  MS_PER_HOUR,
                          '4h':  4 * MS_PER_HOUR,
                          '1d':  MS_PER_DAY}

# Data validation
MIN_CANDLES            = 100
EXTREME_RANGE_PCT      = 0.5      # single bar (high - low) / low
EXTREME_FUNDING_RATE   = 0.005    # 0.5% hourly = 182.5% APR
EXTREME_OI_CHANGE      = 0.5      # period-over-period
GAP_TOLERANCE          = 1.5      # gaps above 1.5x the interval get filled

# Risk defaults
INITIAL_CAPITAL        = 10_000.0
POSITION_SIZE_PCT      = 10.0
LEVERAGE               = 3.0
STOP_LOSS_PCT          = 1.5
TAKE_PROFIT_PCT        = 3.0
MAX_POSITIONS          = 1

# Cost defaults
TAKER_FEE              = 0.0007
MAKER_FEE              = 0.0005
FEE_MULTIPLIER         = 1.5
SLIPPAGE_BASE          = 0.0005
SLIPPAGE_VOLATILITY    = 0.0003
FUNDING_FALLBACK_RATE  = 0.0001   # hourly, used when no observations exist
FUNDING_MEDIAN_FLOOR   = 0.00005
VOLATILITY_PERIOD      = 20
VOLATILITY_CEILING     = 0.05
DEFAULT_VOLATILITY     = 0.5

# Metrics
ANNUALISATION_FACTOR   = 365.0
RATIO_SENTINEL         = 999.0
REGIME_LOOKBACK        = 20
REGIME_TREND_PCT       = 0.05
REGIME_MAX_VOLATILITY  = 0.03

# Validation thresholds (day trading profile)
MIN_SHARPE             = 1.5
MAX_SHARPE             = 3.0
MIN_WIN_RATE           = 0.45
MAX_WIN_RATE           = 0.65
MAX_DRAWDOWN           = 0.20
MIN_PROFIT_FACTOR      = 1.5
MIN_TRADES             = 100
MAX_TRAIN_TEST_DIFF    = 0.30
REGIME_MIN_TRADES      = 10
REGIME_MIN_PF          = 0.8
CONCENTRATION_SHARE    = 0.5
PASSING_SCORE          = 70
