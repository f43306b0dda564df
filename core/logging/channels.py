# Log channel definitions used to tag structured records
from enum import Enum
from typing import Dict


class LogChannel(str, Enum):
    """Logical log channels; rendered as the `channel` field on each record."""
    APPLICATION = "application"
    TRADING = "trading"
    DATABASE = "database"
    API = "api"
    PERFORMANCE = "performance"
    ERROR = "error"


# Component name -> channel routing
COMPONENT_CHANNEL_MAPPING: Dict[str, LogChannel] = {
    "venue_router": LogChannel.TRADING,
    "venue_client": LogChannel.TRADING,
    "execution_simulator": LogChannel.TRADING,
    "order_processor": LogChannel.TRADING,
    "job_dispatcher": LogChannel.TRADING,
    "notification_broadcaster": LogChannel.API,
    "order_repository": LogChannel.DATABASE,
    "database_manager": LogChannel.DATABASE,
    "api": LogChannel.API,
}


def get_channel_for_component(component: str) -> LogChannel:
    """Resolve channel for a component name, defaulting to application."""
    return COMPONENT_CHANNEL_MAPPING.get(component, LogChannel.APPLICATION)
