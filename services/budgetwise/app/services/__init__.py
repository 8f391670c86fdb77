from .deposits import (
    CallbackOutcome,
    CardDepositStarted,
    DepositOrchestrator,
    DepositResult,
    MobileMoneyDepositStarted,
)

__all__ = [
    "CallbackOutcome",
    "CardDepositStarted",
    "DepositOrchestrator",
    "DepositResult",
    "MobileMoneyDepositStarted",
]
