"""
Jastip backend HTTP server

FastAPI application hosting the thin external-service endpoints and the
on-demand job triggers, with the reconciliation scheduler running in the
same process. Run with a single worker: the in-process scheduler is the only
driver of the periodic jobs.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import uvicorn
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from config import Config
from database import build_async_engine, build_session_factory, create_tables, dispose_engine
from jobs.cart_cleanup import CartCleanupJob
from jobs.escrow_settlement import EscrowSettlementJob
from jobs.return_timeout import ReturnArbitrationTimeoutJob
from jobs.scheduler import ReconciliationScheduler
from routes import cron, live, notifications, payments
from services.ledger_store import LedgerStore
from services.live_session_service import HmsService
from services.notification_service import NotificationService
from services.push_notification_service import PushNotificationService
from services.sql_ledger_store import SqlLedgerStore
from services.topup_service import TopUpService
from services.xendit_service import XenditService

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Everything the routes and jobs need, built once at startup"""
    store: LedgerStore
    scheduler: ReconciliationScheduler
    topup: TopUpService
    notifications: NotificationService
    live: HmsService
    cron_token: Optional[str] = None
    engine: Optional[AsyncEngine] = None


def build_scheduler(store: LedgerStore, config=Config) -> ReconciliationScheduler:
    settlement = EscrowSettlementJob(
        store,
        grace_period=config.settlement_grace_period(),
        page_size=config.RECONCILIATION_PAGE_SIZE,
    )
    return_timeout = ReturnArbitrationTimeoutJob(
        store,
        response_timeout=config.return_response_timeout(),
        page_size=config.RECONCILIATION_PAGE_SIZE,
    )
    cart_cleanup = CartCleanupJob(store)

    return ReconciliationScheduler(
        [settlement, return_timeout, cart_cleanup],
        intervals={
            settlement.job_id: timedelta(seconds=config.SETTLEMENT_INTERVAL_SECONDS),
            return_timeout.job_id: timedelta(seconds=config.RETURN_TIMEOUT_INTERVAL_SECONDS),
            cart_cleanup.job_id: timedelta(minutes=config.CART_CLEANUP_INTERVAL_MINUTES),
        },
    )


def build_services(config=Config) -> AppServices:
    engine = build_async_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO)
    store = SqlLedgerStore(build_session_factory(engine))

    return AppServices(
        store=store,
        scheduler=build_scheduler(store, config),
        topup=TopUpService(
            store,
            XenditService(),
            webhook_token=config.XENDIT_WEBHOOK_TOKEN,
            success_redirect_url=config.TOPUP_SUCCESS_REDIRECT_URL,
        ),
        notifications=NotificationService(store, PushNotificationService()),
        live=HmsService(),
        cron_token=config.CRON_TRIGGER_TOKEN,
        engine=engine,
    )


def create_app(services: Optional[AppServices] = None, start_scheduler: Optional[bool] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Tests pass a prepared ``services`` container and ``start_scheduler=False``;
    production builds everything from Config during startup.
    """
    if start_scheduler is None:
        start_scheduler = Config.ENABLE_SCHEDULER

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            Config.log_environment_config()
            app.state.services = build_services()
            await create_tables(app.state.services.engine)

        if start_scheduler:
            app.state.services.scheduler.start()
        else:
            logger.info("Reconciliation scheduler disabled; jobs run only via /cron triggers")

        yield

        app.state.services.scheduler.stop()
        await dispose_engine(app.state.services.engine)

    app = FastAPI(
        title="Jastip Backend",
        description="Escrow reconciliation jobs and marketplace service endpoints",
        lifespan=lifespan,
    )
    app.state.services = services

    app.include_router(live.router)
    app.include_router(notifications.router)
    app.include_router(payments.router)
    app.include_router(cron.router)

    @app.get("/health")
    async def health():
        current = app.state.services
        if current is None:
            return {"status": "starting"}
        return {"status": "ok", **current.scheduler.status()}

    return app


app = create_app()


def main():
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    )
    uvicorn.run(app, host="0.0.0.0", port=Config.PORT, workers=1)


if __name__ == "__main__":
    main()
