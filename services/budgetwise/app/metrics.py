"""Prometheus metrics for ledger postings, deposits and provider calls."""

from __future__ import annotations

import time

from prometheus_client import Counter, Histogram

from .ledger.records import PostingResult

ledger_posting_total = Counter(
    "budgetwise_ledger_posting_total",
    "Number of transactions posted to wallets",
    ["type", "currency"],
)
ledger_idempotency_replay_total = Counter(
    "budgetwise_ledger_idempotency_replay_total",
    "Number of postings answered from an earlier posting with the same external reference",
    ["provider"],
)
deposit_attempt_total = Counter(
    "budgetwise_deposit_attempt_total",
    "Deposit attempts grouped by provider and outcome",
    ["provider", "outcome"],
)
mpesa_callback_total = Counter(
    "budgetwise_mpesa_callback_total",
    "M-Pesa callbacks grouped by processing outcome",
    ["outcome"],
)

_GATEWAY_LATENCY_SECONDS = Histogram(
    "budgetwise_gateway_latency_seconds",
    "Latency of calls to external payment providers",
    ["provider", "operation", "outcome"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0),
)


def record_posting(result: PostingResult) -> None:
    if result.replayed:
        provider = result.transaction.external_provider
        ledger_idempotency_replay_total.labels(provider=provider.value if provider else "none").inc()
        return
    ledger_posting_total.labels(type=result.transaction.type.value, currency=result.wallet.currency).inc()


class TimedCall:
    """Context manager timing a provider call; failures are labelled ``error``."""

    def __init__(self, provider: str, operation: str) -> None:
        self.provider = provider
        self.operation = operation
        self._start = 0.0

    def __enter__(self) -> TimedCall:
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        elapsed = time.perf_counter() - self._start
        outcome = "error" if exc_type else "ok"
        _GATEWAY_LATENCY_SECONDS.labels(provider=self.provider, operation=self.operation, outcome=outcome).observe(elapsed)
