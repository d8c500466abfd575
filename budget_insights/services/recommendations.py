"""
Personalised budgeting recommendations from recent cash flow.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

import structlog

from ..infrastructure.interfaces import Ledger
from ..models.analytics import Recommendation
from ..models.financial import DateRange, Transaction, TransactionFilters
from ..utils.constants import (
    CATEGORY_CONCENTRATION_PERCENT,
    LOW_SAVINGS_RATE_PERCENT,
    MAX_RECOMMENDATIONS,
    PRIORITY_ORDER,
    RECOMMENDATION_LOOKBACK_DAYS,
    SUBSCRIPTION_KEYWORDS,
    TARGET_SAVINGS_RATE_PERCENT,
    UNCATEGORIZED,
    Effort,
    Priority,
    RecommendationType,
    Timeframe,
)
from ..utils.exceptions import data_source_guard
from ..utils.formatting import format_cents
from ..utils.periods import Clock
from ..utils.validators import ensure_valid, validate_household_id

logger = structlog.get_logger()

CATEGORY_REDUCTION_RATE = 0.20
SUBSCRIPTION_REDUCTION_RATE = 0.20
MIN_SUBSCRIPTION_MONTHS = 2


class RecommendationService:
    """Generates recommendations from the last 90 days of ledger activity."""

    def __init__(self, ledger: Ledger, clock: Optional[Clock] = None):
        self.ledger = ledger
        self._clock = clock or datetime.utcnow

    async def generate_recommendations(self, household_id: str) -> List[Recommendation]:
        household_id = ensure_valid(validate_household_id, household_id)
        end = self._clock().date()
        date_range = DateRange(start_date=end - timedelta(days=RECOMMENDATION_LOOKBACK_DAYS), end_date=end)

        async with data_source_guard("ledger", "query_transactions", household_id=household_id):
            transactions = await self.ledger.query_transactions(
                household_id, date_range, TransactionFilters(), order_by_date=True
            )

        months = RECOMMENDATION_LOOKBACK_DAYS / 30
        income = sum(t.amount_cents for t in transactions if t.is_income)
        expenses = sum(t.absolute_amount for t in transactions if t.is_expense)

        recommendations: List[Recommendation] = []
        recommendations.extend(self._savings_recommendations(income, expenses, months))
        recommendations.extend(self._category_recommendations(transactions, expenses, months))
        recommendations.extend(self._subscription_recommendations(transactions, months))

        recommendations.sort(
            key=lambda r: (PRIORITY_ORDER[r.priority], r.potential_savings or 0),
            reverse=True
        )
        recommendations = recommendations[:MAX_RECOMMENDATIONS]

        logger.info(
            "Recommendations generated",
            household_id=household_id,
            transactions=len(transactions),
            count=len(recommendations)
        )
        return recommendations

    def _savings_recommendations(self, income: int, expenses: int, months: float) -> List[Recommendation]:
        recommendations = []
        monthly_income = income / months
        monthly_expenses = expenses / months

        if income > 0:
            savings_rate = (income - expenses) / income * 100
            if savings_rate < LOW_SAVINGS_RATE_PERCENT:
                target_savings = monthly_income * TARGET_SAVINGS_RATE_PERCENT / 100
                current_savings = monthly_income - monthly_expenses
                recommendations.append(Recommendation(
                    type=RecommendationType.SAVINGS_OPPORTUNITY,
                    title="Increase Your Savings Rate",
                    description=(
                        f"Your current savings rate is {savings_rate:.1f}%. "
                        f"Financial experts recommend saving at least {TARGET_SAVINGS_RATE_PERCENT:.0f}% of your income."
                    ),
                    priority=Priority.HIGH,
                    potential_savings=int(max(0.0, target_savings - current_savings)),
                    effort=Effort.MEDIUM,
                    timeframe=Timeframe.MEDIUM_TERM,
                    action_steps=[
                        "Set up an automatic transfer to savings on payday",
                        "Review discretionary spending categories",
                        f"Aim for a {TARGET_SAVINGS_RATE_PERCENT:.0f}% savings rate",
                    ],
                    data={"savings_rate": savings_rate, "monthly_income": monthly_income},
                ))

        if expenses > income:
            overspend = monthly_expenses - monthly_income
            recommendations.append(Recommendation(
                type=RecommendationType.BUDGET_OPTIMIZATION,
                title="Spending Exceeds Income",
                description=(
                    f"You are spending {format_cents(overspend)} more than you earn each month. "
                    "Creating a budget is the fastest way to bring spending back under income."
                ),
                priority=Priority.URGENT,
                potential_savings=int(overspend),
                effort=Effort.HIGH,
                timeframe=Timeframe.IMMEDIATE,
                action_steps=[
                    "List fixed and variable monthly expenses",
                    "Set a spending limit for each category",
                    "Pause non-essential purchases until the gap closes",
                ],
                data={"monthly_income": monthly_income, "monthly_expenses": monthly_expenses},
            ))

        return recommendations

    def _category_recommendations(
        self,
        transactions: List[Transaction],
        expenses: int,
        months: float
    ) -> List[Recommendation]:
        if expenses <= 0:
            return []

        spending: Dict[str, int] = defaultdict(int)
        names: Dict[str, str] = {}
        for t in transactions:
            if t.is_expense:
                category = t.category_id or UNCATEGORIZED
                spending[category] += t.absolute_amount
                if t.category_name:
                    names.setdefault(category, t.category_name)

        recommendations = []
        for category, amount in spending.items():
            share = amount / expenses * 100
            if share <= CATEGORY_CONCENTRATION_PERCENT:
                continue

            name = names.get(category, "Uncategorized")
            monthly_amount = amount / months
            recommendations.append(Recommendation(
                type=RecommendationType.SPENDING_REDUCTION,
                title=f"Reduce {name} Spending",
                description=(
                    f"{name} accounts for {share:.0f}% of your spending "
                    f"({format_cents(monthly_amount)} per month). "
                    f"Cutting it by {CATEGORY_REDUCTION_RATE:.0%} would free up money for savings."
                ),
                priority=Priority.MEDIUM,
                potential_savings=int(monthly_amount * CATEGORY_REDUCTION_RATE),
                effort=Effort.MEDIUM,
                timeframe=Timeframe.SHORT_TERM,
                action_steps=[
                    f"Set a monthly limit for {name}",
                    "Track purchases in this category weekly",
                ],
                data={
                    "category_id": None if category == UNCATEGORIZED else category,
                    "category_name": name,
                    "share_percent": share,
                },
            ))

        return recommendations

    def _subscription_recommendations(self, transactions: List[Transaction], months: float) -> List[Recommendation]:
        charges: Dict[str, List[Transaction]] = defaultdict(list)
        for t in transactions:
            if t.is_expense and t.merchant:
                charges[t.merchant].append(t)

        subscriptions: Dict[str, int] = {}
        for merchant, merchant_charges in charges.items():
            charge_months: Set[tuple] = {(t.date.year, t.date.month) for t in merchant_charges}
            if len(charge_months) >= MIN_SUBSCRIPTION_MONTHS or self._looks_like_subscription(merchant_charges):
                subscriptions[merchant] = sum(t.absolute_amount for t in merchant_charges)

        if not subscriptions:
            return []

        monthly_total = sum(subscriptions.values()) / months
        return [Recommendation(
            type=RecommendationType.SPENDING_REDUCTION,
            title="Review Recurring Subscriptions",
            description=(
                f"You have {len(subscriptions)} recurring charges totalling about "
                f"{format_cents(monthly_total)} per month. Cancel the ones you no longer use."
            ),
            priority=Priority.LOW,
            potential_savings=int(monthly_total * SUBSCRIPTION_REDUCTION_RATE),
            effort=Effort.LOW,
            timeframe=Timeframe.IMMEDIATE,
            action_steps=[
                "List every recurring charge",
                "Cancel subscriptions unused in the last month",
            ],
            data={"merchants": sorted(subscriptions), "monthly_total": monthly_total},
        )]

    @staticmethod
    def _looks_like_subscription(charges: List[Transaction]) -> bool:
        for t in charges:
            text = f"{t.merchant or ''} {t.description}".lower()
            if any(keyword in text for keyword in SUBSCRIPTION_KEYWORDS):
                return True
        return False
