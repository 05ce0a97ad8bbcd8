# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
Process entry point helpers for owning one scheduler instance.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from src.core.config import SchedulerConfig
from src.core.observability import get_logger, initialize_logging
from src.core.services.scheduler import SchedulerService

logger = get_logger(__name__)


@asynccontextmanager
async def scheduler_lifespan(
    config: Optional[SchedulerConfig] = None,
    configure_logging: bool = True,
) -> AsyncGenerator[SchedulerService, None]:
    """Build, start and finally stop a SchedulerService.

    The yielded scheduler is passed by reference to whatever needs it.

    :param config: Scheduler configuration, read from the environment when omitted
    :param configure_logging: Install the log handler described by the config
    :yields: The running scheduler
    """
    config = config or SchedulerConfig.from_env()
    if configure_logging:
        initialize_logging(level=config.log_level, log_format=config.log_format)

    scheduler = None
    try:
        logger.info("Initializing job scheduler...")
        scheduler = SchedulerService.from_config(config)
        await scheduler.start()
        logger.info("Job scheduler initialized successfully")
        yield scheduler

    except Exception as e:
        logger.error(f"Job scheduler failed: {e}", exc_info=True)
        raise

    finally:
        logger.info("Shutting down job scheduler...")
        if scheduler:
            await scheduler.stop()
        logger.info("Job scheduler shutdown complete")
