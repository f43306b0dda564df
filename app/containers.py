# DI container: one instance of each pipeline component per process
from dependency_injector import containers, providers
import redis.asyncio as redis
from prometheus_client import CollectorRegistry

from core.config.settings import Settings
from core.database.connection import DatabaseManager
from core.monitoring.prometheus_metrics import OrderMetricsCollector
from services.routing import VenueRouter, create_venue_clients
from services.execution import ExecutionSimulator
from services.notifications import NotificationBroadcaster
from services.order_processor import OrderCache, OrderRepository, OrderStateMachine
from services.dispatcher import JobDispatcher, RedisJobStore


class AppContainer(containers.DeclarativeContainer):
    """Application dependency injection container"""

    # Configuration
    settings = providers.Singleton(Settings)

    # --- Observability: Prometheus ---
    # Shared registry used by API /metrics endpoint and collectors
    prometheus_registry = providers.Singleton(CollectorRegistry)
    prometheus_metrics = providers.Singleton(
        OrderMetricsCollector,
        registry=prometheus_registry,
    )

    # Database with environment awareness
    db_manager = providers.Singleton(
        DatabaseManager,
        db_url=settings.provided.database.postgres_url,
        environment=settings.provided.environment,
        schema_management=settings.provided.database.schema_management
    )

    # Redis: job store and order cache
    redis_client = providers.Singleton(
        redis.from_url,
        settings.provided.redis.url,
        decode_responses=True
    )

    order_repository = providers.Singleton(
        OrderRepository,
        db_manager=db_manager
    )

    order_cache = providers.Singleton(
        OrderCache,
        settings=settings,
        redis_client=redis_client
    )

    # Routing Engine and Execution Simulator
    venue_clients = providers.Singleton(create_venue_clients, settings)

    venue_router = providers.Singleton(
        VenueRouter,
        clients=venue_clients
    )

    execution_simulator = providers.Singleton(
        ExecutionSimulator,
        settings=settings
    )

    # Notification Broadcaster
    broadcaster = providers.Singleton(
        NotificationBroadcaster,
        metrics=prometheus_metrics
    )

    # Order State Machine
    state_machine = providers.Singleton(
        OrderStateMachine,
        settings=settings,
        router=venue_router,
        simulator=execution_simulator,
        repository=order_repository,
        broadcaster=broadcaster,
        cache=order_cache,
        metrics=prometheus_metrics
    )

    # Job Dispatcher
    job_store = providers.Singleton(
        RedisJobStore,
        redis_client=redis_client,
        queue_name=settings.provided.queue.name
    )

    dispatcher = providers.Singleton(
        JobDispatcher,
        settings=settings,
        store=job_store,
        state_machine=state_machine,
        metrics=prometheus_metrics
    )
