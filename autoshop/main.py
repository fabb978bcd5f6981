import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .database import SessionLocal, engine, init_db
from .engine import ReconciliationEngine
from .notifications import DisabledNotifier, RabbitNotifier
from .payment_gateway import SePayClient
from .routers import admin_router, order_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Order Service",
    description=f"Order and payment reconciliation for {config.SHOP_NAME}",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(order_router.router)
app.include_router(admin_router.router)


def build_engine() -> ReconciliationEngine:
    notifier = RabbitNotifier() if config.NOTIFICATIONS_ENABLED else DisabledNotifier()
    return ReconciliationEngine(SessionLocal, SePayClient(), notifier)


@app.on_event("startup")
async def _startup() -> None:
    # Create database tables
    init_db(engine)

    reconciler = build_engine()
    # Orders still awaiting payment survive restarts through the store
    reconciler.load_pending()
    reconciler.start()
    app.state.engine = reconciler


@app.on_event("shutdown")
async def _shutdown() -> None:
    reconciler = getattr(app.state, "engine", None)
    if reconciler is not None:
        await reconciler.stop()


@app.get("/")
def root():

    return {
        "service": "Order Service",
        "shop": config.SHOP_NAME,
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health")
def health_check():
    reconciler = getattr(app.state, "engine", None)
    return {
        "status": "healthy" if reconciler is not None else "starting",
        "service": "order-service",
        "pending_orders": reconciler.pending_count if reconciler is not None else 0,
    }
