from fastapi import Depends
from dependency_injector.wiring import inject, Provide

from app.containers import AppContainer
from core.config.settings import Settings
from services.dispatcher import JobDispatcher
from services.notifications import NotificationBroadcaster
from services.order_processor import OrderCache, OrderRepository


@inject
def get_settings(
    settings: Settings = Depends(Provide[AppContainer.settings])
) -> Settings:
    """Get application settings for API endpoints"""
    return settings


@inject
def get_order_repository(
    repository: OrderRepository = Depends(Provide[AppContainer.order_repository])
) -> OrderRepository:
    return repository


@inject
def get_order_cache(
    cache: OrderCache = Depends(Provide[AppContainer.order_cache])
) -> OrderCache:
    return cache


@inject
def get_dispatcher(
    dispatcher: JobDispatcher = Depends(Provide[AppContainer.dispatcher])
) -> JobDispatcher:
    return dispatcher


@inject
def get_broadcaster(
    broadcaster: NotificationBroadcaster = Depends(Provide[AppContainer.broadcaster])
) -> NotificationBroadcaster:
    return broadcaster
