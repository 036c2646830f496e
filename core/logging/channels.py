"""
Logging channel definitions for the trade orchestrator.
Channels tag every event so downstream log routing can split trading,
database, performance and error streams.
"""

from enum import Enum
from typing import Dict


class LogChannel(str, Enum):
    """Logging channels for different components."""

    APPLICATION = "application"  # General application logs
    TRADING = "trading"          # Order placement, sizing decisions
    DATABASE = "database"        # Database operations
    PERFORMANCE = "performance"  # Slow queries, long sessions
    ERROR = "error"              # Error logs


# Component name -> channel; unknown components go to APPLICATION
COMPONENT_CHANNELS: Dict[str, LogChannel] = {
    "rebalancer": LogChannel.TRADING,
    "executor": LogChannel.TRADING,
    "orchestrator": LogChannel.TRADING,
    "snapshot": LogChannel.TRADING,
    "database": LogChannel.DATABASE,
    "persistence": LogChannel.DATABASE,
    "performance": LogChannel.PERFORMANCE,
    "error": LogChannel.ERROR,
}


def get_channel_for_component(component: str) -> LogChannel:
    """Resolve the channel a component logs to."""
    return COMPONENT_CHANNELS.get(component, LogChannel.APPLICATION)


def get_channel_level(channel: LogChannel, logging_settings) -> str:
    """Resolve the configured level for a channel."""
    if channel == LogChannel.TRADING:
        return logging_settings.trading_level
    if channel == LogChannel.DATABASE:
        return logging_settings.database_level
    if channel == LogChannel.PERFORMANCE:
        return logging_settings.performance_level
    return logging_settings.level
