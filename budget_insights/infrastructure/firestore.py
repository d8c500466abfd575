"""
Firestore ledger, analytics store and aggregate store.

Queries are built from where clauses; filters Firestore cannot combine in
one query are applied to the streamed rows with the same predicates the
in-memory ledger uses.
"""
import json
import os
from datetime import datetime, time, timezone
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

import structlog
from google.cloud import firestore
from google.cloud.firestore import Client as FirestoreClient
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import BaseModel

from ..config import Settings, get_settings
from ..models.analytics import SpendingPattern
from ..models.financial import DateRange, Transaction, TransactionAggregate, TransactionFilters
from ..models.insights import Insight
from ..models.views import MaterializedViewStatus
from ..utils.constants import InsightType, Period
from ..utils.exceptions import DataSourceError, NotFoundError, data_source_guard
from .interfaces import AggregateStore, AnalyticsStore, Ledger
from .views import TRANSACTION_COLUMNS, VIEW_BUILDERS, aggregate_transactions, transactions_frame

T = TypeVar("T", bound=BaseModel)

logger = structlog.get_logger()

TRANSACTIONS_COLLECTION = "transactions"
PATTERNS_COLLECTION = "spending_patterns"
INSIGHTS_COLLECTION = "insights"
VIEW_STATUS_COLLECTION = "materialized_view_status"
VIEW_ROWS_COLLECTION_PREFIX = "view_"

# Firestore caps a write batch at 500 operations
BATCH_LIMIT = 450

LEDGER_FIELDS = [column for column in TRANSACTION_COLUMNS if column != "id"]


def view_row_id(index: int) -> str:
    return f"row_{index:06d}"


class FirestoreBackend:
    """Shared Firestore client management and model serialization."""

    def __init__(self, client: Optional[FirestoreClient] = None, settings: Optional[Settings] = None):
        self._client = client
        self._settings = settings or get_settings()

    @property
    def client(self) -> FirestoreClient:
        """Get or create Firestore client."""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _create_client(self) -> FirestoreClient:
        """Create and configure Firestore client."""
        try:
            if self._settings.use_firestore_emulator:
                os.environ["FIRESTORE_EMULATOR_HOST"] = self._settings.firestore_emulator_host
                client = firestore.Client(
                    project=self._settings.firestore_project_id,
                    database=self._settings.firestore_database
                )
                logger.info(
                    "Connected to Firestore emulator",
                    host=self._settings.firestore_emulator_host,
                    project=self._settings.firestore_project_id
                )
            else:
                client = firestore.Client(
                    project=self._settings.firestore_project_id,
                    database=self._settings.firestore_database
                )
                logger.info(
                    "Connected to Firestore",
                    project=self._settings.firestore_project_id
                )

            return client

        except Exception as e:
            logger.error("Failed to create Firestore client", error=str(e))
            raise DataSourceError(
                message="Failed to connect to Firestore",
                source="firestore",
                details=[str(e)]
            ) from e

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("Firestore client closed")

    def _serialize_model(self, model: BaseModel) -> Dict[str, Any]:
        """Serialize Pydantic model to Firestore document, keeping native datetimes."""
        data = model.model_dump(mode="json")

        for key, value in model.model_dump().items():
            if isinstance(value, datetime):
                data[key] = value

        return data

    def _deserialize_document(self, doc_data: Dict[str, Any], model_class: Type[T]) -> T:
        """Deserialize Firestore document to Pydantic model."""
        # Firestore returns aware UTC timestamps; the engine works in naive UTC
        for key, value in doc_data.items():
            if isinstance(value, datetime) and value.tzinfo is not None:
                doc_data[key] = value.astimezone(timezone.utc).replace(tzinfo=None)

        try:
            return model_class.model_validate(doc_data)
        except Exception as e:
            logger.error(
                "Failed to deserialize document",
                model_class=model_class.__name__,
                error=str(e)
            )
            raise DataSourceError(
                message=f"Failed to deserialize document to {model_class.__name__}",
                source="firestore",
                details=[str(e)]
            ) from e

    def _stream_models(self, query, model_class: Type[T], transaction=None) -> List[T]:
        results = []
        for doc in query.stream(transaction=transaction):
            doc_data = doc.to_dict()
            doc_data["id"] = doc.id
            results.append(self._deserialize_document(doc_data, model_class))
        return results


class FirestoreLedger(FirestoreBackend, Ledger):
    """Ledger reading the transactions collection."""

    async def query_transactions(
        self,
        household_id: str,
        date_range: DateRange,
        filters: Optional[TransactionFilters] = None,
        order_by_date: bool = True
    ) -> List[Transaction]:
        filters = filters or TransactionFilters()

        async with data_source_guard("firestore", "query_transactions", household_id=household_id):
            query = (
                self.client.collection(TRANSACTIONS_COLLECTION)
                .where(filter=FieldFilter("household_id", "==", household_id))
                .where(filter=FieldFilter("date", ">=", datetime.combine(date_range.start_date, time.min)))
                .where(filter=FieldFilter("date", "<=", datetime.combine(date_range.end_date, time.max)))
            )
            if filters.currency:
                query = query.where(filter=FieldFilter("currency", "==", filters.currency))
            if order_by_date:
                query = query.order_by("date", direction=firestore.Query.ASCENDING)

            rows = [
                transaction
                for transaction in self._stream_models(query, Transaction)
                if filters.matches(transaction)
            ]

        logger.info(
            "Transactions queried",
            household_id=household_id,
            start_date=str(date_range.start_date),
            end_date=str(date_range.end_date),
            count=len(rows)
        )
        return rows

    async def query_aggregates(
        self,
        household_id: str,
        date_range: DateRange,
        group_by: Period,
        filters: Optional[TransactionFilters] = None
    ) -> List[TransactionAggregate]:
        rows = await self.query_transactions(household_id, date_range, filters, order_by_date=False)
        return aggregate_transactions(rows, group_by)


class FirestoreAnalyticsStore(FirestoreBackend, AnalyticsStore):
    """Analytics store whose replace operations run in one Firestore transaction."""

    async def replace_patterns(self, household_id: str, patterns: Sequence[SpendingPattern]) -> None:
        async with data_source_guard("firestore", "replace_patterns", household_id=household_id):
            collection = self.client.collection(PATTERNS_COLLECTION)
            existing_query = collection.where(filter=FieldFilter("household_id", "==", household_id))
            transaction = self.client.transaction()

            @firestore.transactional
            def replace_in_transaction(transaction_ref):
                # Reads must precede writes inside a transaction
                existing = list(existing_query.stream(transaction=transaction_ref))
                for doc in existing:
                    transaction_ref.delete(doc.reference)
                for pattern in patterns:
                    transaction_ref.set(collection.document(pattern.id), self._serialize_model(pattern))
                return len(existing)

            deleted = replace_in_transaction(transaction)

        logger.info(
            "Patterns replaced",
            household_id=household_id,
            deleted=deleted,
            inserted=len(patterns)
        )

    async def get_patterns(self, household_id: str) -> List[SpendingPattern]:
        async with data_source_guard("firestore", "get_patterns", household_id=household_id):
            query = self.client.collection(PATTERNS_COLLECTION).where(
                filter=FieldFilter("household_id", "==", household_id)
            )
            return self._stream_models(query, SpendingPattern)

    async def replace_insights(
        self,
        household_id: str,
        types: Sequence[InsightType],
        insights: Sequence[Insight]
    ) -> None:
        type_values = sorted({InsightType(t).value for t in types})

        async with data_source_guard("firestore", "replace_insights", household_id=household_id):
            collection = self.client.collection(INSIGHTS_COLLECTION)
            transaction = self.client.transaction()

            @firestore.transactional
            def replace_in_transaction(transaction_ref):
                existing = []
                if type_values:
                    existing_query = (
                        collection
                        .where(filter=FieldFilter("household_id", "==", household_id))
                        .where(filter=FieldFilter("type", "in", type_values))
                    )
                    existing = list(existing_query.stream(transaction=transaction_ref))
                for doc in existing:
                    transaction_ref.delete(doc.reference)
                for insight in insights:
                    transaction_ref.set(collection.document(insight.id), self._serialize_model(insight))
                return len(existing)

            deleted = replace_in_transaction(transaction)

        logger.info(
            "Insights replaced",
            household_id=household_id,
            types=type_values,
            deleted=deleted,
            inserted=len(insights)
        )

    async def replace_analysis(
        self,
        household_id: str,
        patterns: Sequence[SpendingPattern],
        types: Sequence[InsightType],
        insights: Sequence[Insight]
    ) -> None:
        type_values = sorted({InsightType(t).value for t in types})

        async with data_source_guard("firestore", "replace_analysis", household_id=household_id):
            patterns_collection = self.client.collection(PATTERNS_COLLECTION)
            insights_collection = self.client.collection(INSIGHTS_COLLECTION)
            patterns_query = patterns_collection.where(filter=FieldFilter("household_id", "==", household_id))
            transaction = self.client.transaction()

            @firestore.transactional
            def replace_in_transaction(transaction_ref):
                existing_patterns = list(patterns_query.stream(transaction=transaction_ref))
                existing_insights = []
                if type_values:
                    insights_query = (
                        insights_collection
                        .where(filter=FieldFilter("household_id", "==", household_id))
                        .where(filter=FieldFilter("type", "in", type_values))
                    )
                    existing_insights = list(insights_query.stream(transaction=transaction_ref))

                for doc in existing_patterns + existing_insights:
                    transaction_ref.delete(doc.reference)
                for pattern in patterns:
                    transaction_ref.set(patterns_collection.document(pattern.id), self._serialize_model(pattern))
                for insight in insights:
                    transaction_ref.set(insights_collection.document(insight.id), self._serialize_model(insight))
                return len(existing_insights)

            deleted = replace_in_transaction(transaction)

        logger.info(
            "Analysis replaced",
            household_id=household_id,
            patterns=len(patterns),
            types=type_values,
            deleted=deleted,
            inserted=len(insights)
        )

    async def get_insights(self, household_id: str) -> List[Insight]:
        async with data_source_guard("firestore", "get_insights", household_id=household_id):
            query = self.client.collection(INSIGHTS_COLLECTION).where(
                filter=FieldFilter("household_id", "==", household_id)
            )
            return self._stream_models(query, Insight)

    async def dismiss_insight(self, insight_id: str) -> Insight:
        async with data_source_guard("firestore", "dismiss_insight", insight_id=insight_id):
            doc_ref = self.client.collection(INSIGHTS_COLLECTION).document(insight_id)
            doc = doc_ref.get()

            if not doc.exists:
                raise NotFoundError(resource_type="insight", resource_id=insight_id)

            doc_ref.update({"is_dismissed": True})

            doc_data = doc.to_dict()
            doc_data["id"] = doc.id
            doc_data["is_dismissed"] = True
            return self._deserialize_document(doc_data, Insight)

    async def upsert_view_status(self, view_name: str, status: MaterializedViewStatus) -> None:
        async with data_source_guard("firestore", "upsert_view_status", view_name=view_name):
            self.client.collection(VIEW_STATUS_COLLECTION).document(view_name).set(
                self._serialize_model(status)
            )

    async def get_view_status(self, view_name: str) -> Optional[MaterializedViewStatus]:
        async with data_source_guard("firestore", "get_view_status", view_name=view_name):
            doc = self.client.collection(VIEW_STATUS_COLLECTION).document(view_name).get()
            if not doc.exists:
                return None
            return self._deserialize_document(doc.to_dict(), MaterializedViewStatus)


class FirestoreAggregateStore(FirestoreBackend, AggregateStore):
    """Materializes view rows into one collection per view."""

    async def refresh_view(self, view_name: str) -> None:
        builder = VIEW_BUILDERS.get(view_name)
        if builder is None:
            raise NotFoundError(resource_type="materialized view", resource_id=view_name)

        async with data_source_guard("firestore", "refresh_view", view_name=view_name):
            # Only the fields the view frame is built from
            ledger_docs = (
                self.client.collection(TRANSACTIONS_COLLECTION)
                .select(LEDGER_FIELDS)
                .stream()
            )
            transactions = []
            for doc in ledger_docs:
                doc_data = doc.to_dict()
                doc_data["id"] = doc.id
                transactions.append(self._deserialize_document(doc_data, Transaction))

            frame = builder(transactions_frame(transactions))
            # JSON round trip turns numpy scalars and timestamps into Firestore-safe values
            rows = json.loads(frame.to_json(orient="records", date_format="iso"))

            # Rows are overwritten in place under stable ids, then leftovers are
            # deleted, so readers never see the view empty mid-rebuild
            target = self.client.collection(f"{VIEW_ROWS_COLLECTION_PREFIX}{view_name}")
            row_ids = [view_row_id(index) for index in range(len(rows))]
            kept = set(row_ids)
            stale = [doc.reference for doc in target.stream() if doc.id not in kept]
            self._commit_in_batches(
                [("set", target.document(row_id), row) for row_id, row in zip(row_ids, rows)]
                + [("delete", doc_ref, None) for doc_ref in stale]
            )

        logger.info("Materialized view rebuilt", view_name=view_name, rows=len(rows), deleted=len(stale))

    def _commit_in_batches(self, operations: List[tuple]) -> None:
        for start in range(0, len(operations), BATCH_LIMIT):
            batch = self.client.batch()
            for action, doc_ref, data in operations[start:start + BATCH_LIMIT]:
                if action == "delete":
                    batch.delete(doc_ref)
                else:
                    batch.set(doc_ref, data)
            batch.commit()
