"""Energy-aware task placement core for cloud cluster simulations."""

__version__ = "0.1.0"
__author__ = "Cloud Project Team"

from loguru import logger

# Configure loguru for the entire package
logger.add(
    "logs/cloud_placement_{time:YYYY-MM-DD}.log",
    rotation="1 day",
    retention="7 days",
    level="INFO",
    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}",
)

from .scheduling import Scheduler, ShutdownReport  # noqa: E402
from .core.simulator import CloudSimulator  # noqa: E402

__all__ = [
    "Scheduler",
    "ShutdownReport",
    "CloudSimulator",
]
