"""Deposit use cases: turn a confirmed external payment into one ledger posting.

Each attempt is tracked as a pending payment. Postings always carry the
provider's reference as their idempotency key, so a confirmation that is
repeated (client retry, duplicate callback, poll racing a callback) is
answered from the original posting instead of crediting the wallet again.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

import httpx
from loguru import logger

from ..errors import (
    BudgetwiseError,
    DepositNotRecorded,
    DepositPathDisabled,
    GatewayError,
    GatewayUnavailable,
    PaymentNotCompleted,
    ValidationError,
)
from ..gateways.card import CANCELED, CardIntentGateway, from_minor_units, to_minor_units
from ..gateways.mpesa import MpesaGateway, StkCallback, StkPushRequest, normalize_phone_number, parse_callback, round_shillings
from ..ledger.records import (
    ExternalReference,
    PaymentProvider,
    PaymentStatus,
    PendingPaymentRecord,
    PostingResult,
    TransactionRecord,
    TransactionType,
    WalletRecord,
)
from ..ledger.store import LedgerStore, to_money
from ..metrics import deposit_attempt_total, mpesa_callback_total, record_posting
from ..payments.pending import TERMINAL_STATUSES, InvalidTransition, PendingPaymentStore
from ..settings import BudgetwiseSettings

MPESA_SUCCESS_CODE = "0"
# Query result codes that mean the customer will not complete the payment
MPESA_TERMINAL_FAILURE_CODES = frozenset({"1", "1032", "1037", "2001"})


@dataclass(frozen=True)
class CardDepositStarted:
    client_secret: str
    payment_intent_id: str


@dataclass(frozen=True)
class MobileMoneyDepositStarted:
    checkout_request_id: str
    merchant_request_id: str
    customer_message: str | None = None


@dataclass(frozen=True)
class DepositResult:
    transaction: TransactionRecord
    wallet: WalletRecord
    replayed: bool = False


class CallbackOutcome(str, Enum):
    rejected = "rejected"
    malformed = "malformed"
    unmatched = "unmatched"
    duplicate = "duplicate"
    failed = "failed"
    unverified = "unverified"
    posted = "posted"
    error = "error"


class DepositOrchestrator:
    def __init__(
        self,
        ledger: LedgerStore,
        payments: PendingPaymentStore,
        card: CardIntentGateway,
        mpesa: MpesaGateway,
        settings: BudgetwiseSettings,
    ) -> None:
        self.ledger = ledger
        self.payments = payments
        self.card = card
        self.mpesa = mpesa
        self.settings = settings

    # Card

    async def start_card_deposit(self, user_id: int, amount: Decimal) -> CardDepositStarted:
        value = to_money(amount)
        if not self.card.configured:
            deposit_attempt_total.labels(provider="card", outcome="unconfigured").inc()
            raise GatewayUnavailable("Card payments are not configured")
        wallet = await self.ledger.get_wallet_by_user(user_id)
        customer_id = await self._ensure_card_customer(user_id)

        pending = await self.payments.create(PaymentProvider.card, user_id, wallet.id, value, wallet.currency)
        try:
            intent = await self.card.create_intent(
                to_minor_units(value),
                wallet.currency,
                customer_id=customer_id,
                metadata={"user_id": str(user_id), "deposit_id": pending.id},
                idempotency_key=pending.id,
            )
        except GatewayError as exc:
            await self.payments.transition(pending.id, PaymentStatus.failed, failure_detail=exc.message)
            deposit_attempt_total.labels(provider="card", outcome="gateway_error").inc()
            raise
        await self.payments.attach_reference(pending.id, intent.intent_id)
        deposit_attempt_total.labels(provider="card", outcome="started").inc()
        return CardDepositStarted(client_secret=intent.client_secret or "", payment_intent_id=intent.intent_id)

    async def _ensure_card_customer(self, user_id: int) -> str | None:
        user = await self.ledger.get_user(user_id)
        if user is None:
            return None
        if user.external_customer_id:
            return user.external_customer_id
        customer_id = await self.card.create_customer(user.email, user.display_name)
        await self.ledger.set_external_customer_id(user_id, customer_id)
        return customer_id

    async def confirm_card_deposit(
        self,
        user_id: int,
        payment_intent_id: str | None,
        amount: Decimal | None = None,
    ) -> DepositResult:
        if not self.card.configured:
            raise GatewayUnavailable("Card payments are not configured")
        if not payment_intent_id:
            raise ValidationError("Payment confirmation required")

        wallet = await self.ledger.get_wallet_by_user(user_id)
        pending = await self.payments.get_by_reference(PaymentProvider.card, payment_intent_id)
        if pending is None or pending.user_id != user_id:
            raise ValidationError("Invalid payment information")

        reference = ExternalReference(PaymentProvider.card, payment_intent_id)
        if pending.status == PaymentStatus.posted:
            return await self._replay(reference, wallet)
        if pending.status == PaymentStatus.failed:
            raise PaymentNotCompleted(pending.failure_detail or PaymentStatus.failed.value)

        try:
            intent = await self.card.retrieve_intent(payment_intent_id)
        except GatewayError as exc:
            if exc.provider_status in (400, 404):
                raise ValidationError("Invalid payment information") from exc
            raise

        if not intent.succeeded:
            if intent.status == CANCELED:
                await self.payments.transition(pending.id, PaymentStatus.failed, failure_detail=intent.status)
            deposit_attempt_total.labels(provider="card", outcome="not_completed").inc()
            raise PaymentNotCompleted(intent.status)

        received = from_minor_units(intent.amount_received or intent.amount)
        if amount is not None and to_money(amount) != received:
            raise ValidationError("Deposit amount does not match the confirmed payment")

        if pending.status == PaymentStatus.awaiting_confirmation:
            pending = await self._advance(pending, PaymentStatus.confirmed)
        result = await self._post_deposit(
            pending,
            received,
            reference,
            description="Wallet deposit via card",
        )
        deposit_attempt_total.labels(provider="card", outcome="replayed" if result.replayed else "posted").inc()
        return result

    # Mobile money

    async def start_mobile_money_deposit(
        self,
        user_id: int,
        phone_number: str,
        amount: Decimal,
        description: str | None = None,
    ) -> MobileMoneyDepositStarted:
        if not self.mpesa.configured:
            deposit_attempt_total.labels(provider="mpesa", outcome="unconfigured").inc()
            raise GatewayUnavailable("M-Pesa payments are not configured")
        phone = normalize_phone_number(phone_number)
        shillings = round_shillings(amount)
        wallet = await self.ledger.get_wallet_by_user(user_id)

        pending = await self.payments.create(
            PaymentProvider.mpesa,
            user_id,
            wallet.id,
            Decimal(shillings),
            wallet.currency,
            phone_number=phone,
        )
        request = StkPushRequest(
            phone_number=phone,
            amount=shillings,
            callback_url=self._callback_url(),
            account_reference=f"Budgetwise-{user_id}",
            description=(description or "Deposit")[:13],
        )
        try:
            response = await self.mpesa.initiate_push(request)
        except GatewayError as exc:
            await self.payments.transition(pending.id, PaymentStatus.failed, failure_detail=exc.message)
            deposit_attempt_total.labels(provider="mpesa", outcome="gateway_error").inc()
            raise
        await self.payments.attach_reference(pending.id, response.checkout_request_id)
        deposit_attempt_total.labels(provider="mpesa", outcome="started").inc()
        return MobileMoneyDepositStarted(
            checkout_request_id=response.checkout_request_id,
            merchant_request_id=response.merchant_request_id,
            customer_message=response.customer_message,
        )

    def _callback_url(self) -> str:
        base = self.settings.mpesa_callback_base_url.rstrip("/")
        url = httpx.URL(f"{base}/api/mpesa/callback")
        token = self.settings.mpesa_callback_token
        if token is not None and token.get_secret_value():
            url = url.copy_merge_params({"token": token.get_secret_value()})
        return str(url)

    async def record_unverified_mobile_money_deposit(
        self,
        user_id: int,
        phone_number: str,
        amount: Decimal,
        description: str | None = None,
    ) -> DepositResult:
        """Credit the wallet without asking the provider; for demos and tests only."""
        if not self.settings.unverified_deposits_enabled:
            raise DepositPathDisabled("Unverified M-Pesa deposits are disabled")
        phone = normalize_phone_number(phone_number)
        wallet = await self.ledger.get_wallet_by_user(user_id)
        result = await self.ledger.post_transaction(
            user_id,
            wallet.id,
            TransactionType.deposit,
            amount,
            description=f"{description or f'M-Pesa deposit from {phone}'} (unverified)",
        )
        record_posting(result)
        deposit_attempt_total.labels(provider="mpesa", outcome="unverified").inc()
        logger.warning("deposits.mpesa.unverified_posted user_id={} transaction_id={}", user_id, result.transaction.id)
        return DepositResult(transaction=result.transaction, wallet=result.wallet)

    async def handle_mobile_money_callback(self, payload: Any, token: str | None) -> CallbackOutcome:
        """Process a provider callback; never raises."""
        try:
            outcome = await self._process_callback(payload, token)
        except Exception:  # noqa: BLE001 - the provider must always get its acknowledgement
            logger.exception("deposits.mpesa.callback_error")
            outcome = CallbackOutcome.error
        mpesa_callback_total.labels(outcome=outcome.value).inc()
        return outcome

    async def _process_callback(self, payload: Any, token: str | None) -> CallbackOutcome:
        if not self.mpesa.validate_callback(payload, token):
            logger.warning("deposits.mpesa.callback_rejected")
            return CallbackOutcome.rejected
        try:
            callback = parse_callback(payload)
        except (KeyError, TypeError, ValueError, ArithmeticError):
            logger.warning("deposits.mpesa.callback_malformed")
            return CallbackOutcome.malformed

        log = logger.bind(
            checkout_request_id=callback.checkout_request_id,
            result_code=callback.result_code,
            result_description=callback.result_description,
        )
        pending = await self._resolve_pending(callback)
        if pending is None:
            log.warning(
                "deposits.mpesa.callback_unmatched result_code={} description={}",
                callback.result_code,
                callback.result_description,
            )
            return CallbackOutcome.unmatched
        if pending.status in TERMINAL_STATUSES:
            log.info("deposits.mpesa.callback_duplicate payment_id={} status={}", pending.id, pending.status.value)
            return CallbackOutcome.duplicate

        if not callback.succeeded:
            await self.payments.transition(pending.id, PaymentStatus.failed, failure_detail=callback.result_description)
            log.info(
                "deposits.mpesa.payment_failed payment_id={} result_code={} description={}",
                pending.id,
                callback.result_code,
                callback.result_description,
            )
            return CallbackOutcome.failed

        if self.settings.mpesa_verify_callbacks and not await self._provider_confirms(pending):
            log.warning("deposits.mpesa.callback_unverified payment_id={}", pending.id)
            return CallbackOutcome.unverified

        amount = callback.amount if callback.amount is not None else pending.amount
        if amount != pending.amount:
            log.warning("deposits.mpesa.amount_mismatch requested={} paid={}", pending.amount, amount)
        await self._post_deposit(
            pending,
            amount,
            ExternalReference(PaymentProvider.mpesa, pending.external_reference),
            description=_mpesa_description(callback, pending),
        )
        deposit_attempt_total.labels(provider="mpesa", outcome="posted").inc()
        return CallbackOutcome.posted

    async def _resolve_pending(self, callback: StkCallback) -> PendingPaymentRecord | None:
        if callback.checkout_request_id:
            return await self.payments.get_by_reference(PaymentProvider.mpesa, callback.checkout_request_id)
        # Without a checkout id the payer's phone is the only link to an attempt
        if callback.phone_number:
            try:
                phone = normalize_phone_number(callback.phone_number)
            except ValidationError:
                return None
            return await self.payments.find_awaiting_by_phone(PaymentProvider.mpesa, phone)
        return None

    async def _provider_confirms(self, pending: PendingPaymentRecord) -> bool:
        try:
            status = await self.mpesa.check_status(pending.external_reference)
        except BudgetwiseError as exc:
            logger.warning("deposits.mpesa.verification_failed payment_id={} error={}", pending.id, exc.message)
            return False
        return str(status.get("ResultCode")) == MPESA_SUCCESS_CODE

    async def query_mobile_money_deposit(self, user_id: int, checkout_request_id: str) -> dict[str, Any]:
        """Ask the provider for the push status; post the deposit once it reports success."""
        status = await self.mpesa.check_status(checkout_request_id)
        pending = await self.payments.get_by_reference(PaymentProvider.mpesa, checkout_request_id)
        if pending is None or pending.user_id != user_id or pending.status in TERMINAL_STATUSES:
            return status

        result_code = str(status.get("ResultCode", ""))
        if result_code == MPESA_SUCCESS_CODE:
            await self._post_deposit(
                pending,
                pending.amount,
                ExternalReference(PaymentProvider.mpesa, checkout_request_id),
                description=f"M-Pesa deposit from {pending.phone_number}",
            )
            deposit_attempt_total.labels(provider="mpesa", outcome="posted").inc()
        elif result_code in MPESA_TERMINAL_FAILURE_CODES:
            await self.payments.transition(
                pending.id, PaymentStatus.failed, failure_detail=str(status.get("ResultDesc", result_code))
            )
        return status

    # Shared

    async def _post_deposit(
        self,
        pending: PendingPaymentRecord,
        amount: Decimal,
        reference: ExternalReference,
        *,
        description: str,
    ) -> DepositResult:
        try:
            result: PostingResult = await self.ledger.post_transaction(
                pending.user_id,
                pending.wallet_id,
                TransactionType.deposit,
                amount,
                description=description,
                external_reference=reference,
            )
        except Exception as exc:
            logger.opt(exception=exc).error(
                "deposits.posting_failed provider={} reference={} user_id={}",
                reference.provider.value,
                reference.reference,
                pending.user_id,
            )
            raise DepositNotRecorded(reference.reference) from exc

        record_posting(result)
        await self._advance(pending, PaymentStatus.posted, transaction_id=result.transaction.id)
        logger.info(
            "deposits.posted provider={} reference={} transaction_id={} replayed={}",
            reference.provider.value,
            reference.reference,
            result.transaction.id,
            result.replayed,
        )
        return DepositResult(transaction=result.transaction, wallet=result.wallet, replayed=result.replayed)

    async def _advance(
        self,
        pending: PendingPaymentRecord,
        status: PaymentStatus,
        *,
        transaction_id: int | None = None,
    ) -> PendingPaymentRecord:
        """Move the attempt forward unless a concurrent confirmation already did."""
        try:
            return await self.payments.transition(pending.id, status, transaction_id=transaction_id)
        except InvalidTransition:
            current = await self.payments.get(pending.id)
            logger.info(
                "deposits.pending.already_advanced payment_id={} status={}",
                pending.id,
                current.status.value if current else None,
            )
            return current or pending

    async def _replay(self, reference: ExternalReference, wallet: WalletRecord) -> DepositResult:
        transaction = await self.ledger.find_transaction_by_reference(reference)
        if transaction is None:
            raise DepositNotRecorded(reference.reference)
        current = await self.ledger.get_wallet(wallet.id) or wallet
        return DepositResult(transaction=transaction, wallet=current, replayed=True)


def _mpesa_description(callback: StkCallback, pending: PendingPaymentRecord) -> str:
    phone = callback.phone_number or pending.phone_number
    if callback.receipt_number:
        return f"M-Pesa deposit from {phone} (receipt {callback.receipt_number})"
    return f"M-Pesa deposit from {phone}"
