"""
Custom Exceptions
================
Application-specific exception classes
"""

from .core_constants import ErrorCodes


class WhaleGridException(Exception):
    """Base exception for the whale-aware grid trading core"""
    def __init__(self, message: str, error_code: str = None):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class ValidationError(WhaleGridException):
    """Invalid input data (grid bounds, counts, labels)"""
    def __init__(self, message: str, error_code: str = ErrorCodes.VALIDATION_FAILED):
        super().__init__(message, error_code)


class ConfigurationError(WhaleGridException):
    """Configuration or setup errors"""
    def __init__(self, message: str, error_code: str = ErrorCodes.CONFIG_INVALID):
        super().__init__(message, error_code)


# Risk errors

class RiskError(WhaleGridException):
    """A trade was rejected by the risk engine"""
    pass


class KillSwitchActiveError(RiskError):
    def __init__(self):
        super().__init__("Kill switch is ACTIVE. Trading disabled.", ErrorCodes.KILL_SWITCH_ACTIVE)


class TokenBlacklistedError(RiskError):
    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Token is blacklisted: {token}", ErrorCodes.TOKEN_BLACKLISTED)


class DevBlacklistedError(RiskError):
    def __init__(self, dev_wallet: str):
        self.dev_wallet = dev_wallet
        super().__init__(f"Developer wallet is blacklisted: {dev_wallet}", ErrorCodes.DEV_BLACKLISTED)


class MaxTradeSizeExceededError(RiskError):
    def __init__(self, attempted: float, maximum: float):
        self.attempted = attempted
        self.maximum = maximum
        super().__init__(
            f"Trade size ${attempted:.2f} exceeds limit ${maximum:.2f}",
            ErrorCodes.MAX_TRADE_SIZE
        )


class MaxDailyLossExceededError(RiskError):
    def __init__(self, current_loss: float, maximum: float):
        self.current_loss = current_loss
        self.maximum = maximum
        super().__init__(
            f"Daily loss limit reached (${current_loss:.2f} / ${maximum:.2f})",
            ErrorCodes.MAX_DAILY_LOSS
        )


class MaxOpenPositionsExceededError(RiskError):
    def __init__(self, current: int, maximum: int):
        self.current = current
        self.maximum = maximum
        super().__init__(
            f"Max open positions reached ({current}/{maximum})",
            ErrorCodes.MAX_OPEN_POSITIONS
        )


class RiskDataError(RiskError):
    """Risk state could not be loaded from the store"""
    def __init__(self, message: str):
        super().__init__(f"Risk engine DB error: {message}", ErrorCodes.RISK_DATA)


# Collaborator errors

class CollaboratorError(WhaleGridException):
    """Terminal failure reported by an external collaborator"""
    def __init__(self, message: str, error_code: str = ErrorCodes.RETRIES_EXHAUSTED):
        super().__init__(message, error_code)


class PriceFeedError(CollaboratorError):
    def __init__(self, message: str):
        super().__init__(message, ErrorCodes.PRICE_FEED_FAILED)


class SwapExecutionError(CollaboratorError):
    def __init__(self, message: str):
        super().__init__(message, ErrorCodes.SWAP_FAILED)


class SecurityCheckError(CollaboratorError):
    def __init__(self, message: str, error_code: str = ErrorCodes.SECURITY_CHECK_FAILED):
        super().__init__(message, error_code)


class DatabaseError(CollaboratorError):
    def __init__(self, message: str):
        super().__init__(message, ErrorCodes.DB_OPERATION_FAILED)


# Data errors

class GridDataError(WhaleGridException):
    """A grid strategy is in an inconsistent state"""
    def __init__(self, message: str, error_code: str = ErrorCodes.GRID_DATA_INVALID):
        super().__init__(message, error_code)


class StrategyNotFoundError(GridDataError):
    def __init__(self, strategy_id: str):
        self.strategy_id = strategy_id
        super().__init__(f"Grid strategy not found: {strategy_id}", ErrorCodes.STRATEGY_NOT_FOUND)


class PositionError(WhaleGridException):
    """Position management errors"""
    def __init__(self, message: str, error_code: str = ErrorCodes.POSITION_NOT_FOUND):
        super().__init__(message, error_code)


class PositionPersistenceError(PositionError):
    """Book changed after an executed swap but the store write failed; queued for retry"""
    def __init__(self, position_id: str, message: str, sold: float = 0.0, realized: float = 0.0):
        self.position_id = position_id
        self.sold = sold
        self.realized = realized
        super().__init__(
            f"Position {position_id} not persisted: {message}",
            ErrorCodes.POSITION_NOT_PERSISTED
        )
