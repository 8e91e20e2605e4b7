from __future__ import annotations

from lpbook.application.use_cases.get_portfolio import GetPortfolioUseCase
from lpbook.application.use_cases.list_lifecycle_records import ListLifecycleRecordsUseCase
from lpbook.application.use_cases.list_positions import ListPositionsUseCase
from lpbook.application.use_cases.recommend_range import RecommendRangeUseCase
from lpbook.infrastructure.db.engine import get_engine
from lpbook.infrastructure.db.repositories.lifecycle_record_repository import (
    SqlLifecycleRecordRepository,
)
from lpbook.infrastructure.storage.json_ledger_store import JsonLedgerStore
from lpbook.shared.config import get_settings


def get_portfolio_use_case() -> GetPortfolioUseCase:
    settings = get_settings()
    return GetPortfolioUseCase(
        ledger_store=JsonLedgerStore(settings.ledger_path),
        capital_policy=settings.capital,
    )


def get_list_positions_use_case() -> ListPositionsUseCase:
    settings = get_settings()
    return ListPositionsUseCase(ledger_store=JsonLedgerStore(settings.ledger_path))


def get_list_lifecycle_records_use_case() -> ListLifecycleRecordsUseCase:
    settings = get_settings()
    repository = SqlLifecycleRecordRepository(get_engine(settings.records_dsn))
    return ListLifecycleRecordsUseCase(record_port=repository)


def get_recommend_range_use_case() -> RecommendRangeUseCase:
    return RecommendRangeUseCase(policy=get_settings().policy)
