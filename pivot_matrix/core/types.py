"""Core enums used across the Pivot Matrix system."""

from enum import Enum, auto


class TrendDirection(Enum):
    UNKNOWN = auto()
    UP = auto()
    DOWN = auto()


class PivotKind(Enum):
    HIGH = auto()
    LOW = auto()


class TradeDirection(Enum):
    LONG = auto()
    SHORT = auto()


class PositionSide(Enum):
    FLAT = auto()
    LONG = auto()
    SHORT = auto()


class OrderKind(Enum):
    ENTRY = auto()
    STOP = auto()
    TARGET = auto()
    PENDING_LIMIT_LONG = auto()
    PENDING_LIMIT_SHORT = auto()


class OrderState(Enum):
    SUBMITTED = "submitted"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class OrderType(Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP_MARKET = "stop_market"


class OrderAction(Enum):
    BUY = "buy"
    SELL = "sell"


class EntryMode(Enum):
    BAR_REVERSAL = "bar_reversal"
    LIMIT_ENTRY = "limit_entry"


class ConfirmationProtocol(Enum):
    BAR_CLOSE = "bar_close"
    TICK_REVERSAL = "tick_reversal"
    LIMIT_CHASE = "limit_chase"


class StrategyStage(Enum):
    CREATED = auto()
    CONFIGURED = auto()
    RUNNING = auto()
    STOPPED = auto()


class EventType(Enum):
    PIVOT_CONFIRMED = "PIVOT_CONFIRMED"
    ZONE_LEFT = "ZONE_LEFT"
    ZONE_INVALIDATED = "ZONE_INVALIDATED"
    ENTRY_SIGNAL = "ENTRY_SIGNAL"
    ORDER_FILLED = "ORDER_FILLED"
    POSITION_CLOSED = "POSITION_CLOSED"
    STOP_MOVED = "STOP_MOVED"
    TRADING_HALTED = "TRADING_HALTED"
    DAILY_RESET = "DAILY_RESET"
    WEEKLY_RESET = "WEEKLY_RESET"
