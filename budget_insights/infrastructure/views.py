"""
Materialized view definitions.

Each builder turns a frame of ledger transactions into one precomputed
aggregate. Transfers between the household's own accounts are excluded
from every flow-based view.
"""
from typing import Callable, Dict, Iterable, List

import numpy as np
import pandas as pd

from ..models.financial import Transaction, TransactionAggregate
from ..utils.constants import Period
from ..utils.periods import bucket_start

TRANSACTION_COLUMNS = [
    "id",
    "household_id",
    "account_id",
    "category_id",
    "category_name",
    "merchant",
    "currency",
    "date",
    "amount_cents",
    "transfer_account_id",
]

DAILY_SPENDING_COLUMNS = [
    "household_id", "day", "category_id", "currency", "total_income_cents",
    "total_expense_cents", "transaction_count", "avg_amount_cents",
    "accounts_used", "merchants_used",
]
MONTHLY_CATEGORY_COLUMNS = [
    "household_id", "month", "category_id", "category_name", "currency",
    "total_income_cents", "total_expense_cents", "transaction_count",
    "avg_amount_cents", "accounts_used", "merchants_used",
]
ACCOUNT_BALANCE_COLUMNS = ["household_id", "account_id", "currency", "date", "balance_cents"]
NET_WORTH_COLUMNS = [
    "household_id", "date", "currency", "total_assets_cents",
    "total_liabilities_cents", "net_worth_cents",
]
MERCHANT_COLUMNS = [
    "household_id", "merchant", "currency", "transaction_count", "total_spent_cents",
    "avg_spent_cents", "first_transaction", "last_transaction", "months_active",
    "categories_used",
]
CATEGORY_TREND_COLUMNS = [
    "household_id", "category_id", "currency", "month", "category_name",
    "monthly_total_cents", "monthly_transaction_count", "prev_month_total_cents",
    "three_month_avg_cents", "trend_direction", "trend_percentage",
]
CASHFLOW_COLUMNS = [
    "household_id", "month", "currency", "total_inflow_cents", "total_outflow_cents",
    "net_cashflow_cents", "inflow_transaction_count", "outflow_transaction_count",
    "avg_inflow_cents", "avg_outflow_cents",
]

# Merchants need repeat business to show up in the merchant view
MIN_MERCHANT_TRANSACTIONS = 2

# Group key for transactions without a category
NO_CATEGORY = ""


def transactions_frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
    """Build the ledger frame every view is computed from."""
    records = [
        {
            "id": t.id,
            "household_id": t.household_id,
            "account_id": t.account_id,
            "category_id": t.category_id,
            "category_name": t.category_name,
            "merchant": t.merchant,
            "currency": t.currency,
            "date": pd.Timestamp(t.date).normalize(),
            "amount_cents": t.amount_cents,
            "transfer_account_id": t.transfer_account_id,
        }
        for t in transactions
    ]
    df = pd.DataFrame.from_records(records, columns=TRANSACTION_COLUMNS)
    if not df.empty:
        df["date"] = pd.to_datetime(df["date"])
    return df


def _optional(value):
    """Map pandas missing markers back to None."""
    if value is None or value == NO_CATEGORY:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    return value


def _empty(columns: List[str]) -> pd.DataFrame:
    return pd.DataFrame(columns=columns)


def _non_transfer(df: pd.DataFrame) -> pd.DataFrame:
    return df[df["transfer_account_id"].isna()].copy()


def _with_flows(df: pd.DataFrame) -> pd.DataFrame:
    amounts = df["amount_cents"]
    return df.assign(
        income_cents=amounts.clip(lower=0),
        expense_cents=(-amounts).clip(lower=0),
        absolute_cents=amounts.abs(),
        month=df["date"].dt.to_period("M").dt.to_timestamp(),
    )


def daily_spending_summary(df: pd.DataFrame) -> pd.DataFrame:
    """Income, expense and activity per household, day, category and currency."""
    flows = _non_transfer(df)
    if flows.empty:
        return _empty(DAILY_SPENDING_COLUMNS)

    flows = _with_flows(flows).assign(day=flows["date"].dt.floor("D"))
    summary = flows.groupby(
        ["household_id", "day", "category_id", "currency"], dropna=False
    ).agg(
        total_income_cents=("income_cents", "sum"),
        total_expense_cents=("expense_cents", "sum"),
        transaction_count=("amount_cents", "size"),
        avg_amount_cents=("absolute_cents", "mean"),
        accounts_used=("account_id", "nunique"),
        merchants_used=("merchant", "nunique"),
    )
    return summary.reset_index()[DAILY_SPENDING_COLUMNS]


def monthly_category_breakdown(df: pd.DataFrame) -> pd.DataFrame:
    """Income, expense and activity per household, month and category."""
    flows = _non_transfer(df)
    if flows.empty:
        return _empty(MONTHLY_CATEGORY_COLUMNS)

    flows = _with_flows(flows)
    summary = flows.groupby(
        ["household_id", "month", "category_id", "category_name", "currency"], dropna=False
    ).agg(
        total_income_cents=("income_cents", "sum"),
        total_expense_cents=("expense_cents", "sum"),
        transaction_count=("amount_cents", "size"),
        avg_amount_cents=("absolute_cents", "mean"),
        accounts_used=("account_id", "nunique"),
        merchants_used=("merchant", "nunique"),
    )
    return summary.reset_index()[MONTHLY_CATEGORY_COLUMNS]


def account_balance_history(df: pd.DataFrame) -> pd.DataFrame:
    """
    Running end-of-day balance per account.

    A transfer debits its account and credits transfer_account_id with the
    opposite amount.
    """
    if df.empty:
        return _empty(ACCOUNT_BALANCE_COLUMNS)

    legs = df[["household_id", "account_id", "currency", "date", "amount_cents"]]
    transfers = df[df["transfer_account_id"].notna()]
    counter_legs = pd.DataFrame({
        "household_id": transfers["household_id"],
        "account_id": transfers["transfer_account_id"],
        "currency": transfers["currency"],
        "date": transfers["date"],
        "amount_cents": -transfers["amount_cents"],
    })
    legs = pd.concat([legs, counter_legs], ignore_index=True)

    keys = ["household_id", "account_id", "currency"]
    daily = (
        legs.groupby(keys + ["date"])
        .agg(net_cents=("amount_cents", "sum"))
        .reset_index()
        .sort_values(keys + ["date"])
    )
    daily["balance_cents"] = daily.groupby(keys)["net_cents"].cumsum()
    return daily[ACCOUNT_BALANCE_COLUMNS].reset_index(drop=True)


def net_worth_tracking(df: pd.DataFrame) -> pd.DataFrame:
    """Assets, liabilities and net worth per household, currency and day."""
    balances = account_balance_history(df)
    if balances.empty:
        return _empty(NET_WORTH_COLUMNS)

    frames = []
    for (household_id, currency), group in balances.groupby(["household_id", "currency"]):
        # Carry each account's last balance forward over days without activity
        wide = (
            group.pivot_table(index="date", columns="account_id", values="balance_cents", aggfunc="last")
            .sort_index()
            .ffill()
            .fillna(0)
        )
        assets = wide.clip(lower=0).sum(axis=1)
        liabilities = (-wide).clip(lower=0).sum(axis=1)
        frames.append(pd.DataFrame({
            "household_id": household_id,
            "date": wide.index,
            "currency": currency,
            "total_assets_cents": assets.to_numpy(),
            "total_liabilities_cents": liabilities.to_numpy(),
            "net_worth_cents": (assets - liabilities).to_numpy(),
        }))

    return pd.concat(frames, ignore_index=True)[NET_WORTH_COLUMNS]


def merchant_spending_analysis(df: pd.DataFrame) -> pd.DataFrame:
    """Spending per merchant for merchants with repeat expenses."""
    expenses = _non_transfer(df)
    expenses = expenses[(expenses["amount_cents"] < 0) & expenses["merchant"].notna()]
    if expenses.empty:
        return _empty(MERCHANT_COLUMNS)

    expenses = _with_flows(expenses)
    summary = expenses.groupby(["household_id", "merchant", "currency"]).agg(
        transaction_count=("amount_cents", "size"),
        total_spent_cents=("absolute_cents", "sum"),
        avg_spent_cents=("absolute_cents", "mean"),
        first_transaction=("date", "min"),
        last_transaction=("date", "max"),
        months_active=("month", "nunique"),
        categories_used=("category_id", "nunique"),
    ).reset_index()

    summary = summary[summary["transaction_count"] >= MIN_MERCHANT_TRANSACTIONS]
    return summary[MERCHANT_COLUMNS].reset_index(drop=True)


def category_trend_analysis(df: pd.DataFrame) -> pd.DataFrame:
    """Monthly category totals with month-over-month direction."""
    flows = _non_transfer(df)
    flows = flows[flows["category_id"].notna()]
    if flows.empty:
        return _empty(CATEGORY_TREND_COLUMNS)

    flows = _with_flows(flows)
    keys = ["household_id", "category_id", "currency"]
    monthly = (
        flows.groupby(keys + ["month"])
        .agg(
            category_name=("category_name", "first"),
            monthly_total_cents=("absolute_cents", "sum"),
            monthly_transaction_count=("amount_cents", "size"),
        )
        .reset_index()
        .sort_values(keys + ["month"])
    )

    totals = monthly.groupby(keys)["monthly_total_cents"]
    monthly["prev_month_total_cents"] = totals.shift(1)
    monthly["three_month_avg_cents"] = totals.transform(
        lambda s: s.rolling(3, min_periods=1).mean()
    )

    current = monthly["monthly_total_cents"]
    previous = monthly["prev_month_total_cents"]
    monthly["trend_direction"] = np.select(
        [previous.isna(), current > previous * 1.1, current < previous * 0.9],
        ["NEW", "UP", "DOWN"],
        default="STABLE",
    )
    monthly["trend_percentage"] = ((current - previous) * 100.0 / previous).where(previous > 0, 0.0)

    return monthly[CATEGORY_TREND_COLUMNS].reset_index(drop=True)


def cashflow_analysis(df: pd.DataFrame) -> pd.DataFrame:
    """Inflow, outflow and net cashflow per household, month and currency."""
    flows = _non_transfer(df)
    if flows.empty:
        return _empty(CASHFLOW_COLUMNS)

    amounts = flows["amount_cents"]
    flows = _with_flows(flows).assign(
        is_inflow=(amounts > 0).astype(int),
        is_outflow=(amounts < 0).astype(int),
        inflow_cents=amounts.where(amounts > 0),
        outflow_cents=(-amounts).where(amounts < 0),
    )
    summary = flows.groupby(["household_id", "month", "currency"]).agg(
        total_inflow_cents=("income_cents", "sum"),
        total_outflow_cents=("expense_cents", "sum"),
        net_cashflow_cents=("amount_cents", "sum"),
        inflow_transaction_count=("is_inflow", "sum"),
        outflow_transaction_count=("is_outflow", "sum"),
        avg_inflow_cents=("inflow_cents", "mean"),
        avg_outflow_cents=("outflow_cents", "mean"),
    )
    return summary.reset_index()[CASHFLOW_COLUMNS]


VIEW_BUILDERS: Dict[str, Callable[[pd.DataFrame], pd.DataFrame]] = {
    "daily_spending_summary": daily_spending_summary,
    "monthly_category_breakdown": monthly_category_breakdown,
    "account_balance_history": account_balance_history,
    "net_worth_tracking": net_worth_tracking,
    "merchant_spending_analysis": merchant_spending_analysis,
    "category_trend_analysis": category_trend_analysis,
    "cashflow_analysis": cashflow_analysis,
}


def aggregate_transactions(
    transactions: Iterable[Transaction],
    group_by: Period
) -> List[TransactionAggregate]:
    """Sum transactions into one aggregate per (bucket, category, currency)."""
    records = [
        {
            "bucket": bucket_start(t.date, group_by),
            "category_id": t.category_id or NO_CATEGORY,
            "category_name": t.category_name,
            "currency": t.currency,
            "amount_cents": t.amount_cents,
        }
        for t in transactions
    ]
    if not records:
        return []

    df = pd.DataFrame.from_records(records)
    amounts = df["amount_cents"]
    df = df.assign(
        income_cents=amounts.clip(lower=0),
        expense_cents=(-amounts).clip(lower=0),
        absolute_cents=amounts.abs(),
    )

    grouped = df.groupby(["bucket", "category_id", "currency"], sort=True).agg(
        category_name=("category_name", "first"),
        income_cents=("income_cents", "sum"),
        expense_cents=("expense_cents", "sum"),
        transaction_count=("amount_cents", "size"),
        average_cents=("absolute_cents", "mean"),
    ).reset_index()

    return [
        TransactionAggregate(
            bucket=row.bucket,
            category_id=_optional(row.category_id),
            category_name=_optional(row.category_name),
            currency=row.currency,
            income_cents=int(row.income_cents),
            expense_cents=int(row.expense_cents),
            transaction_count=int(row.transaction_count),
            average_cents=float(row.average_cents),
        )
        for row in grouped.itertuples(index=False)
    ]
