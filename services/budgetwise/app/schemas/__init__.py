from .auth import LoginRequest, RegisterRequest, RegisterResponse, Token, UserResponse
from .catalog import BudgetCreate, BudgetResponse, CategoryResponse
from .deposit import CardDepositRequest, DepositResponse, PaymentIntentCreate, PaymentIntentResponse
from .mpesa import CallbackAck, MobileMoneyDepositCreate, StkPushCreate, StkPushResult
from .wallet import PostedTransactionResponse, TransactionCreate, TransactionResponse, WalletResponse

__all__ = [
    "BudgetCreate",
    "BudgetResponse",
    "CallbackAck",
    "CardDepositRequest",
    "CategoryResponse",
    "DepositResponse",
    "LoginRequest",
    "MobileMoneyDepositCreate",
    "PaymentIntentCreate",
    "PaymentIntentResponse",
    "PostedTransactionResponse",
    "RegisterRequest",
    "RegisterResponse",
    "StkPushCreate",
    "StkPushResult",
    "Token",
    "TransactionCreate",
    "TransactionResponse",
    "UserResponse",
]
