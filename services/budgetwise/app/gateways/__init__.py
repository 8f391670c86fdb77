from .card import CardIntent, CardIntentGateway, from_minor_units, to_minor_units
from .mpesa import (
    MpesaGateway,
    StkCallback,
    StkPushRequest,
    StkPushResponse,
    normalize_phone_number,
    parse_callback,
    round_shillings,
)

__all__ = [
    "CardIntent",
    "CardIntentGateway",
    "MpesaGateway",
    "StkCallback",
    "StkPushRequest",
    "StkPushResponse",
    "from_minor_units",
    "normalize_phone_number",
    "parse_callback",
    "round_shillings",
    "to_minor_units",
]
