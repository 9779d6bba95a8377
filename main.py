"""
judgeindex main entry point
Database, scheduled sync and analytics jobs, and the HTTP API
"""

import asyncio

import uvicorn
from loguru import logger

from judgeindex.api.app import create_app
from judgeindex.bootstrap import build_components
from judgeindex.datastore.engine import close_db, get_session_factory, init_db
from judgeindex.jobs.scheduler import job_scheduler
from judgeindex.settings import global_settings


async def main() -> None:
    logger.info("Starting judgeindex...")
    components = None

    try:
        logger.info("Initializing database...")
        await init_db()
        logger.info("Database initialized successfully")

        components = build_components(global_settings, get_session_factory())

        job_scheduler.set_components(components)
        job_scheduler.start()

        app = create_app(components, job_scheduler)
        config = uvicorn.Config(
            app,
            host=global_settings.api_host,
            port=global_settings.api_port,
            log_level="info",
        )
        logger.info(
            f"API listening on {global_settings.api_host}:{global_settings.api_port}"
        )
        await uvicorn.Server(config).serve()

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Error in main loop: {e}")
        raise
    finally:
        job_scheduler.stop()
        if components is not None:
            components.orchestrator.stop()
            await components.close()

        logger.info("Closing database connections...")
        await close_db()

        logger.info("judgeindex stopped")


if __name__ == "__main__":
    asyncio.run(main())
