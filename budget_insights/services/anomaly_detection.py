"""
Anomaly detection over ledger transactions.

Three detectors:
- statistical outliers: expenses above mean + k * stddev of the window
- new merchants: recent spending at merchants never seen before
- category spikes: recent category spend well above its monthly average
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from ..infrastructure.interfaces import Ledger
from ..models.analytics import AnomalyDetectionOptions, FinancialAnomaly
from ..models.financial import DateRange, Transaction, TransactionFilters
from ..utils.constants import (
    CATEGORY_SPIKE_RATIO,
    HIGH_SEVERITY_AMOUNT_CENTS,
    HIGH_SEVERITY_DEVIATION_PERCENT,
    MEDIUM_SEVERITY_AMOUNT_CENTS,
    MEDIUM_SEVERITY_DEVIATION_PERCENT,
    MIN_ANOMALY_SAMPLES,
    NEW_MERCHANT_THRESHOLDS,
    SENSITIVITY_STDDEV_MULTIPLIERS,
    SEVERITY_ORDER,
    UNCATEGORIZED,
    AnomalyType,
    Sensitivity,
    Severity,
)
from ..utils.exceptions import data_source_guard
from ..utils.formatting import format_cents
from ..utils.periods import Clock
from ..utils.validators import ensure_valid, parse_options, validate_household_id
from .statistics import clamp, mean, std_dev

logger = structlog.get_logger()

# Confidence reported for a first-seen merchant
NEW_MERCHANT_CONFIDENCE = 0.8
MAX_CATEGORY_CONFIDENCE = 0.9
DAYS_PER_MONTH = 30


def calculate_severity(deviation: float, amount: float) -> Severity:
    """Severity from the relative deviation and the absolute amount."""
    if deviation > HIGH_SEVERITY_DEVIATION_PERCENT or amount > HIGH_SEVERITY_AMOUNT_CENTS:
        return Severity.HIGH
    if deviation > MEDIUM_SEVERITY_DEVIATION_PERCENT or amount > MEDIUM_SEVERITY_AMOUNT_CENTS:
        return Severity.MEDIUM
    return Severity.LOW


def detect_statistical_anomalies(
    transactions: Sequence[Transaction],
    sensitivity: Sensitivity = Sensitivity.MEDIUM,
    now: Optional[datetime] = None
) -> List[FinancialAnomaly]:
    """
    Flag expenses strictly above mean + k * stddev of absolute expense amounts.

    k is 1.0 / 1.5 / 2.0 for HIGH / MEDIUM / LOW sensitivity. Needs at least
    three expenses; a window of identical amounts has no outliers.
    """
    expenses = [t for t in transactions if t.is_expense and not t.is_transfer]
    if len(expenses) < MIN_ANOMALY_SAMPLES:
        return []

    amounts = [t.absolute_amount for t in expenses]
    average = mean(amounts)
    deviation_std = std_dev(amounts)
    if deviation_std == 0:
        return []

    multiplier = SENSITIVITY_STDDEV_MULTIPLIERS[Sensitivity(sensitivity)]
    threshold = average + multiplier * deviation_std
    detected_at = now or datetime.utcnow()

    anomalies = []
    for transaction in expenses:
        amount = transaction.absolute_amount
        if amount <= threshold:
            continue

        deviation = (amount - average) / average * 100
        z_score = (amount - average) / deviation_std
        category = transaction.category_name or "Uncategorized"

        anomalies.append(FinancialAnomaly(
            type=AnomalyType.UNUSUAL_SPENDING,
            title="Unusually High Spending Detected",
            description=(
                f"Spent {format_cents(amount, transaction.currency)} on {category}, "
                f"which is {deviation:.0f}% higher than usual"
            ),
            severity=calculate_severity(deviation, amount),
            transaction_id=transaction.id,
            amount=amount,
            expected_amount=average,
            deviation=deviation,
            confidence=clamp((amount - threshold) / deviation_std, 0.0, 1.0),
            reason=(
                f"Amount is {z_score:.1f} standard deviations above the average expense "
                f"of {format_cents(average, transaction.currency)}"
            ),
            detected_at=detected_at,
            data={
                "category_id": transaction.category_id,
                "category_name": category,
                "merchant": transaction.merchant,
                "date": transaction.date.isoformat(),
                "threshold": threshold,
            },
        ))

    return anomalies


def sort_anomalies(anomalies: List[FinancialAnomaly]) -> List[FinancialAnomaly]:
    """Most severe first, then most confident."""
    return sorted(
        anomalies,
        key=lambda a: (SEVERITY_ORDER[a.severity], a.confidence),
        reverse=True
    )


class AnomalyDetectionService:
    """Runs the anomaly detectors over a household's recent ledger window."""

    def __init__(self, ledger: Ledger, clock: Optional[Clock] = None):
        self.ledger = ledger
        self._clock = clock or datetime.utcnow

    def detect(
        self,
        transactions: Sequence[Transaction],
        sensitivity: Sensitivity = Sensitivity.MEDIUM
    ) -> List[FinancialAnomaly]:
        return detect_statistical_anomalies(transactions, sensitivity, now=self._clock())

    async def detect_anomalies(
        self,
        household_id: str,
        options: Optional[Union[AnomalyDetectionOptions, Dict[str, Any]]] = None
    ) -> List[FinancialAnomaly]:
        household_id = ensure_valid(validate_household_id, household_id)
        options = parse_options(AnomalyDetectionOptions, options)
        now = self._clock()

        end = now.date()
        date_range = DateRange(start_date=end - timedelta(days=options.lookback_days), end_date=end)

        async with data_source_guard("ledger", "query_transactions", household_id=household_id):
            transactions = await self.ledger.query_transactions(
                household_id, date_range, TransactionFilters(), order_by_date=True
            )

        anomalies = detect_statistical_anomalies(transactions, options.sensitivity, now=now)

        recent_start = end - timedelta(days=options.recent_days)
        recent = [t for t in transactions if t.date.date() >= recent_start]
        historical = [t for t in transactions if t.date.date() < recent_start]

        if options.include_merchant_anomalies:
            anomalies.extend(self._detect_merchant_anomalies(recent, historical, options.sensitivity, now))

        if options.include_category_anomalies:
            historical_months = max(1.0, (options.lookback_days - options.recent_days) / DAYS_PER_MONTH)
            anomalies.extend(self._detect_category_anomalies(
                recent, historical, historical_months, options.min_deviation, now
            ))

        anomalies = sort_anomalies(anomalies)
        logger.info(
            "Anomaly detection completed",
            household_id=household_id,
            sensitivity=Sensitivity(options.sensitivity).value,
            transactions=len(transactions),
            anomalies=len(anomalies)
        )
        return anomalies

    def _detect_merchant_anomalies(
        self,
        recent: List[Transaction],
        historical: List[Transaction],
        sensitivity: Sensitivity,
        now: datetime
    ) -> List[FinancialAnomaly]:
        known_merchants = {t.merchant for t in historical if t.merchant}
        new_spending: Dict[str, List[Transaction]] = defaultdict(list)

        for transaction in recent:
            if transaction.is_expense and transaction.merchant and transaction.merchant not in known_merchants:
                new_spending[transaction.merchant].append(transaction)

        threshold = NEW_MERCHANT_THRESHOLDS[Sensitivity(sensitivity)]
        anomalies = []

        for merchant, merchant_transactions in new_spending.items():
            total = sum(t.absolute_amount for t in merchant_transactions)
            if total <= threshold:
                continue

            currency = merchant_transactions[0].currency
            anomalies.append(FinancialAnomaly(
                type=AnomalyType.UNUSUAL_MERCHANT,
                title="New Merchant Spending",
                description=f"First time spending at {merchant} with total of {format_cents(total, currency)}",
                severity=Severity.HIGH if total > threshold * 5 else Severity.MEDIUM,
                amount=total,
                deviation=100.0,
                confidence=NEW_MERCHANT_CONFIDENCE,
                reason=f"No spending at {merchant} in the historical window",
                detected_at=now,
                data={
                    "merchant": merchant,
                    "total_amount": total,
                    "transaction_count": len(merchant_transactions),
                    "transaction_ids": [t.id for t in merchant_transactions],
                },
            ))

        return anomalies

    def _detect_category_anomalies(
        self,
        recent: List[Transaction],
        historical: List[Transaction],
        historical_months: float,
        min_deviation: float,
        now: datetime
    ) -> List[FinancialAnomaly]:
        recent_spending = self._category_spending(recent)
        historical_spending = self._category_spending(historical)
        names = {t.category_id or UNCATEGORIZED: t.category_name for t in recent if t.category_name}

        anomalies = []
        for category, recent_amount in recent_spending.items():
            historical_amount = historical_spending.get(category)
            if not historical_amount:
                continue

            monthly_average = historical_amount / historical_months
            deviation = abs(recent_amount - monthly_average) / monthly_average * 100

            if deviation <= min_deviation or recent_amount <= monthly_average * CATEGORY_SPIKE_RATIO:
                continue

            name = names.get(category, "Uncategorized")
            anomalies.append(FinancialAnomaly(
                type=AnomalyType.UNUSUAL_CATEGORY,
                title="Unusual Category Spending",
                description=f"Spending in {name} is {deviation:.0f}% higher than usual this month",
                severity=calculate_severity(deviation, recent_amount),
                amount=recent_amount,
                expected_amount=monthly_average,
                deviation=deviation,
                confidence=min(MAX_CATEGORY_CONFIDENCE, deviation / 100),
                reason=(
                    f"Recent spending is {recent_amount / monthly_average:.1f}x "
                    f"the historical monthly average"
                ),
                detected_at=now,
                data={
                    "category_id": None if category == UNCATEGORIZED else category,
                    "category_name": name,
                    "recent_amount": recent_amount,
                    "historical_average": monthly_average,
                },
            ))

        return anomalies

    @staticmethod
    def _category_spending(transactions: List[Transaction]) -> Dict[str, int]:
        spending: Dict[str, int] = defaultdict(int)
        for transaction in transactions:
            if transaction.is_expense:
                spending[transaction.category_id or UNCATEGORIZED] += transaction.absolute_amount
        return spending
