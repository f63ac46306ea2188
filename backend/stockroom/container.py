from __future__ import annotations

from stockroom.core.config import Settings
from stockroom.infrastructure.circuit_breaker import CircuitBreaker
from stockroom.infrastructure.logging import setup_logging
from stockroom.infrastructure.persistence_clients import MongoClientManager, RedisClientManager
from stockroom.repositories.history_repository import HistoryRepository
from stockroom.repositories.product_repository import ProductRepository
from stockroom.repositories.reservation_repository import ReservationRepository
from stockroom.repositories.transactions import TransactionRunner
from stockroom.services.adjustment_service import AdjustmentService
from stockroom.services.analytics_service import AnalyticsService
from stockroom.services.cache_service import CacheService, MemoryCache
from stockroom.services.inventory_service import InventoryService
from stockroom.services.reservation_service import ReservationService
from stockroom.services.stock_event_service import StockEventPublisher
from stockroom.services.stock_query_service import StockQueryService
from stockroom.store.in_memory import InMemoryStore


class Container:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings.from_env()
        self.store = InMemoryStore()
        self.mongo_manager = MongoClientManager(
            uri=self.settings.mongodb_uri,
            enabled=self.settings.enable_external_services,
        )
        self.redis_manager = RedisClientManager(
            url=self.settings.redis_url,
            enabled=self.settings.enable_external_services,
        )
        self.cache_breaker = CircuitBreaker(
            failure_threshold=self.settings.cache_failure_threshold,
            recovery_timeout_seconds=self.settings.cache_recovery_seconds,
        )
        self.transaction_runner = TransactionRunner(
            store=self.store,
            mongo_manager=self.mongo_manager,
            max_retries=self.settings.inventory_max_retries,
        )

        self.product_repository = ProductRepository(
            store=self.store,
            mongo_manager=self.mongo_manager,
        )
        self.reservation_repository = ReservationRepository(
            store=self.store,
            mongo_manager=self.mongo_manager,
        )
        self.history_repository = HistoryRepository(
            store=self.store,
            mongo_manager=self.mongo_manager,
        )

        self.cache_service = CacheService(
            redis_manager=self.redis_manager,
            breaker=self.cache_breaker,
            memory=MemoryCache(max_entries=self.settings.cache_memory_max_entries),
        )
        self.event_publisher = StockEventPublisher(
            store=self.store,
            redis_manager=self.redis_manager,
        )
        self.stock_query = StockQueryService(
            product_repository=self.product_repository,
            reservation_repository=self.reservation_repository,
        )
        self.adjustment_service = AdjustmentService(
            settings=self.settings,
            product_repository=self.product_repository,
            history_repository=self.history_repository,
            stock_query=self.stock_query,
            cache_service=self.cache_service,
            event_publisher=self.event_publisher,
        )
        self.reservation_service = ReservationService(
            settings=self.settings,
            transaction_runner=self.transaction_runner,
            reservation_repository=self.reservation_repository,
            stock_query=self.stock_query,
            adjustment_service=self.adjustment_service,
            cache_service=self.cache_service,
        )
        self.analytics_service = AnalyticsService(
            product_repository=self.product_repository,
            reservation_repository=self.reservation_repository,
            history_repository=self.history_repository,
            cache_service=self.cache_service,
        )
        self.inventory_service = InventoryService(
            stock_query=self.stock_query,
            reservation_service=self.reservation_service,
            adjustment_service=self.adjustment_service,
            analytics_service=self.analytics_service,
            history_repository=self.history_repository,
            cache_service=self.cache_service,
        )

    async def start(self) -> None:
        setup_logging(self.settings.log_level)
        await self.mongo_manager.connect()
        await self.redis_manager.connect()

    async def stop(self) -> None:
        await self.event_publisher.flush()
        await self.mongo_manager.disconnect()
        await self.redis_manager.disconnect()


container = Container()

# Re-export to avoid breaking imports in other modules
settings = container.settings
store = container.store
mongo_manager = container.mongo_manager
redis_manager = container.redis_manager
cache_breaker = container.cache_breaker
cache_service = container.cache_service
event_publisher = container.event_publisher
inventory_service = container.inventory_service
