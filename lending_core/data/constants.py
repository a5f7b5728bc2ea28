"""Fixed-point scales and protocol constants."""

# Decimal precisions (number of fractional digits)
WAD_PRECISION = 18
RAY_PRECISION = 27
BPS_PRECISION = 4

# Raw units representing 1.0 at each precision
WAD = 10**WAD_PRECISION
RAY = 10**RAY_PRECISION
BPS = 10**BPS_PRECISION

SECONDS_PER_YEAR = 31_556_926

# Liquidation bonus cap (15%)
MAX_LIQUIDATION_BONUS_BPS = 1_500

# Health factors a liquidation is sized to restore, tried in order (BPS)
LIQUIDATION_TARGET_HEALTH_BPS = (10_200, 10_100)

# Accounts whose collateral is worth less than $5 can have their debt written off
BAD_DEBT_USD_THRESHOLD = 5 * WAD

# Oracle tolerance bounds, in BPS
MIN_FIRST_TOLERANCE_BPS = 50  # 0.5%
MAX_FIRST_TOLERANCE_BPS = 5_000  # 50%
MIN_LAST_TOLERANCE_BPS = 150  # 1.5%
MAX_LAST_TOLERANCE_BPS = 10_000  # 100%

DEFAULT_MAX_PRICE_STALE_SECONDS = 900
DEFAULT_MAX_POSITIONS = 10

# E-mode category 0 means "no category selected"
NO_EMODE_CATEGORY = 0
