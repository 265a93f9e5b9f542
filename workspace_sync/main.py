"""
Workspace Sync service
Recovery and reconciliation between the local store and a Notion workspace
"""

import os
import sys
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
import structlog

from .auth import StaticTokenProvider
from .config import RecoveryConfig
from .database import Database
from .notion.client import NotionWorkspaceClient
from .api.routes import create_recovery_router
from .sync.link_registry import LinkRegistry
from .sync.local_store import SqlLocalStore
from .sync.orchestrator import RecoveryOrchestrator
from .sync.resolution_applier import ResolutionApplier
from .sync.status_store import SyncStatusStore
from .utils.time_utils import utc_now

load_dotenv()


def configure_logging(level: str = "INFO") -> None:
    """Configure structured logging"""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True
    )


configure_logging(os.getenv("LOG_LEVEL", "INFO"))

logger = structlog.get_logger(__name__)

# Global services
database: Database = None
token_provider: StaticTokenProvider = None
notion_client: NotionWorkspaceClient = None
orchestrator: RecoveryOrchestrator = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    global database, token_provider, notion_client, orchestrator

    try:
        database = Database()
        await database.initialize()

        recovery_config = RecoveryConfig()
        status_store = SyncStatusStore(database)
        local_store = SqlLocalStore(database, status_store)

        token_provider = StaticTokenProvider()
        notion_client = NotionWorkspaceClient(token_provider)

        orchestrator = RecoveryOrchestrator(
            retriever=notion_client,
            local_store=local_store,
            status_store=status_store,
            link_registry=LinkRegistry(database),
            applier=ResolutionApplier(database, local_store, status_store, recovery_config),
            config=recovery_config
        )

        app.include_router(create_recovery_router(orchestrator))

        logger.info("Workspace Sync initialized successfully")

        yield

    except Exception as e:
        logger.error("Failed to initialize Workspace Sync", error=str(e))
        raise
    finally:
        if notion_client:
            await notion_client.close()
        if database:
            await database.close()


app = FastAPI(
    title="Workspace Sync",
    description="Reconciliation between the local system of record and a Notion workspace",
    version="1.0.0",
    lifespan=lifespan
)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    db_status = await database.health_check() if database else "not_initialized"
    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "timestamp": utc_now().isoformat(),
        "services": {
            "database": db_status,
            "notion": "configured" if token_provider and token_provider.has_token else "missing_credentials",
        }
    }


def main():
    """Main entry point"""
    try:
        host = os.getenv("HOST", "0.0.0.0")
        port = int(os.getenv("PORT", "7200"))

        logger.info("Starting Workspace Sync", host=host, port=port)

        import uvicorn
        uvicorn.run(
            "workspace_sync.main:app",
            host=host,
            port=port,
            reload=os.getenv("ENVIRONMENT") == "development",
            log_level="info"
        )

    except Exception as e:
        logger.error("Failed to start Workspace Sync", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
