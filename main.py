import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from core.config import Settings, settings as default_settings
from core.database import create_db_and_tables, engine as default_engine
from core.exceptions import GymFlowError, gymflow_error_handler
from routes.payment import router as payment_router
from routes.settlements import router as settlements_router
from routes.subscriptions import router as subscriptions_router
from services.audit_service import AuditService
from services.email_service import EmailService
from services.job_queue import AUDIT_LOG_QUEUE, NOTIFICATION_QUEUE, PAYMENT_EVENT_QUEUE, JobQueue
from services.notification_service import NotificationService
from services.payment_gateway import PaymentGateway, get_payment_gateway
from services.reconciliation_service import ReconciliationService
from services.settlement_service import SettlementService
from services.subscription_service import SubscriptionService
from workers.queue_worker import QueueWorker
from workers.scheduler import PeriodicTask

load_dotenv()

logger = logging.getLogger(__name__)


def build_workers(app: FastAPI, settings: Settings) -> list[QueueWorker]:
    """One worker per queue, each wired to its handler."""
    handlers = {
        AUDIT_LOG_QUEUE: app.state.audit_service.write_audit_log,
        NOTIFICATION_QUEUE: app.state.notification_service.deliver,
        PAYMENT_EVENT_QUEUE: app.state.reconciliation_service.handle_webhook_event,
    }
    return [
        QueueWorker(
            app.state.job_queue,
            queue_name,
            handler,
            concurrency=settings.QUEUE_CONCURRENCY,
            rate_limit=settings.QUEUE_RATE_LIMIT,
            rate_period=settings.QUEUE_RATE_PERIOD_SECONDS,
            poll_interval=settings.QUEUE_POLL_INTERVAL_SECONDS,
            failed_retention=timedelta(hours=settings.QUEUE_FAILED_RETENTION_HOURS),
            stalled_after=timedelta(seconds=settings.QUEUE_STALLED_AFTER_SECONDS),
        )
        for queue_name, handler in handlers.items()
    ]


def create_app(
    engine: Optional[Engine] = None,
    gateway: Optional[PaymentGateway] = None,
    email_service: Optional[EmailService] = None,
    settings: Optional[Settings] = None,
    start_workers: Optional[bool] = None,
) -> FastAPI:
    settings = settings or default_settings
    engine = engine or default_engine
    gateway = gateway or get_payment_gateway(settings)
    email_service = email_service or EmailService(settings.SENDGRID_API_KEY, settings.MAIL_FROM, settings.APP_NAME)
    if start_workers is None:
        start_workers = settings.QUEUE_WORKERS_ENABLED

    # =========================================
    # 🏁 Lifespan (DB init, queue workers, expiry sweep)
    # =========================================
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        create_db_and_tables(app.state.engine)
        logger.info("✅ Database tables created on startup.")

        background = []
        if start_workers:
            background.extend(build_workers(app, settings))
            background.append(PeriodicTask(
                "expire-subscriptions",
                app.state.subscription_service.mark_expired_subscriptions,
                settings.SUBSCRIPTION_EXPIRY_CHECK_SECONDS,
            ))
            for task in background:
                task.start()
            logger.info(f"👷 Started {len(background)} background tasks")

        yield

        for task in background:
            await task.stop()
        logger.info("✅ Application shutting down.")

    # =========================================
    #  ✅ FastAPI App
    # =========================================
    app = FastAPI(
        lifespan=lifespan,
        title=f"{settings.APP_NAME} Backend",
        debug=settings.DEBUG and not settings.IS_PRODUCTION,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.job_queue = JobQueue(
        engine,
        default_max_attempts=settings.QUEUE_MAX_ATTEMPTS,
        backoff_seconds=settings.QUEUE_BACKOFF_SECONDS,
    )
    app.state.audit_service = AuditService(engine, app.state.job_queue)
    app.state.notification_service = NotificationService(engine, app.state.job_queue, email_service)
    app.state.subscription_service = SubscriptionService(
        engine,
        gateway,
        app.state.audit_service,
        currency=settings.PAYMENT_CURRENCY,
        app_name=settings.APP_NAME,
        access_code_length=settings.ACCESS_CODE_LENGTH,
    )
    app.state.reconciliation_service = ReconciliationService(
        engine,
        gateway,
        app.state.audit_service,
        app.state.notification_service,
        app.state.job_queue,
    )
    app.state.settlement_service = SettlementService(
        engine,
        app.state.audit_service,
        app.state.notification_service,
    )

    allowed_origins = [
        settings.FRONTEND_URL,
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(GymFlowError, gymflow_error_handler)

    # =========================================
    # 📦 Routers
    # =========================================
    app.include_router(subscriptions_router)
    app.include_router(payment_router)  # ✅ Razorpay checkout + webhooks
    app.include_router(settlements_router)

    # =========================================
    # 🩺 Health Check
    # =========================================
    @app.get("/health")
    def health_check():
        return {"status": "ok", "message": "Backend is running"}

    return app


logging.basicConfig(
    level=default_settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
