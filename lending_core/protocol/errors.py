"""Protocol error taxonomy.

Every failure aborts the whole entry point; the storage transaction is
discarded, so none of these are ever raised with partially applied state.
"""


class LendingError(Exception):
    """Base class for all protocol failures."""

    message = "Lending operation failed."

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail
        text = self.message if detail is None else f"{self.message} ({detail})"
        super().__init__(text)


class ScaleMismatch(TypeError):
    """Two decimals of different scale were combined without a rescale."""


# ---------------------------------------------------------------------------
# Families
# ---------------------------------------------------------------------------

class ValidationError(LendingError, ValueError):
    message = "Invalid input."


class CapacityError(LendingError):
    message = "Capacity exceeded."


class SolvencyError(LendingError):
    message = "Insufficient solvency."


class PolicyError(LendingError):
    message = "Operation not allowed by asset policy."


class PricingError(LendingError):
    message = "Price unavailable."


class ArithmeticFault(LendingError, ArithmeticError):
    message = "Arithmetic error."


class AccessError(LendingError):
    message = "Access denied."


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class AssetNotSupported(ValidationError):
    message = "Asset not supported."


class AmountMustBePositive(ValidationError):
    message = "Amount must be greater than zero."


class InvalidPayments(ValidationError):
    message = "Invalid payments."


class AccountNotFound(ValidationError):
    message = "Account not in the market."


class PositionNotFound(ValidationError):
    message = "Position not found."


class InvalidMarketParams(ValidationError):
    message = "Invalid market parameters."


class InvalidLiquidationThreshold(ValidationError):
    message = "Invalid liquidation threshold has to be higher than the loan-to-value."


class InvalidTolerance(ValidationError):
    message = "Unexpected oracle tolerance."


class AssetAlreadySupported(ValidationError):
    message = "Asset already supported."


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------

class SupplyCapReached(CapacityError):
    message = "Supply cap reached."


class BorrowCapReached(CapacityError):
    message = "Borrow cap reached."


class PositionLimitExceeded(CapacityError):
    message = "Position limit exceeded. Maximum positions per account reached."


# ---------------------------------------------------------------------------
# Solvency
# ---------------------------------------------------------------------------

class InsufficientCollateral(SolvencyError):
    message = "Not enough collateral available for this loan."


class InsufficientLiquidity(SolvencyError):
    message = "Insufficient liquidity."


class HealthFactorTooLowForWithdraw(SolvencyError):
    message = "Health factor will be too low after withdrawal."


class HealthFactorNotLowEnough(SolvencyError):
    message = "Health not low enough for liquidation."


class NoCollateralToSeize(SolvencyError):
    message = "No collateral available to seize."


class LiquidationReceiptTooLow(SolvencyError):
    message = "Liquidated amount after fees is below the accepted minimum."


class CannotCleanBadDebt(SolvencyError):
    message = "Cannot clean bad debt."


class InsufficientRevenue(SolvencyError):
    message = "Not enough protocol revenue."


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

class MixIsolatedCollateral(PolicyError):
    message = "Cannot mix isolated collateral with other assets."


class DebtCeilingReached(PolicyError):
    message = "Debt ceiling reached for isolated asset."


class AssetNotBorrowableInIsolation(PolicyError):
    message = "Asset not borrowable in isolation."


class AssetNotBorrowableInSiloed(PolicyError):
    message = (
        "Asset can not be borrowed when in siloed mode, "
        "if there are other borrow positions."
    )


class EModeCategoryNotFound(PolicyError):
    message = "E-mode category not found."


class EModeCategoryDeprecated(PolicyError):
    message = "E-mode category deprecated."


class EModeWithIsolatedAsset(PolicyError):
    message = "Cannot use E-Mode with isolated assets."


class AssetNotSupportedInEMode(PolicyError):
    message = "Asset not supported in E-mode."


class AssetNotCollateralizable(PolicyError):
    message = "Asset not supported as collateral."


class AssetNotBorrowable(PolicyError):
    message = "Asset not borrowable."


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

class PriceAggregatorNotSet(PricingError):
    message = "Price aggregator not set."


class PriceFeedStale(PricingError):
    message = "Price feed is stale."


class UnsafePriceNotAllowed(PricingError):
    message = (
        "The price is out the safety range for such action, "
        "oracles will sync in few minutes."
    )


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------

class DivisionByZero(ArithmeticFault):
    message = "Division by zero."


class NegativeAmount(ArithmeticFault):
    message = "Result would be negative."


class InvalidTimeOrdering(ArithmeticFault):
    message = "Timestamp is earlier than the last sync."


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------

class FlashLoanAlreadyOngoing(AccessError):
    message = "Flash loan already ongoing."


class InvalidFlashLoanEndpoint(AccessError):
    message = "Invalid endpoint for flashloan."


class NestedOperationFailed(AccessError):
    message = "An operation nested in this call failed."


class FlashLoanNotEnabled(PolicyError):
    message = "Flashloan not enabled for this asset."


class InvalidFlashLoanRepayment(SolvencyError):
    message = "Invalid flashloan re-payment."


class LiquidationTokenMismatch(ValidationError):
    message = "Token sent is not the same as the liquidation token."
