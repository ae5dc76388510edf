from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from aslan_crm.api import automation, automation_settings, health, notifications, orders, tasks
from aslan_crm.automation.exceptions import AutomationError
from aslan_crm.core.config import settings, logger
from aslan_crm.core.middleware import RequestContextMiddleware, global_exception_handler, http_exception_handler
from aslan_crm.db.database import create_tables


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await create_tables()
    logger.info(f"{settings.APP_NAME} started ({settings.APP_ENV})")
    yield


app = FastAPI(
    title="Aslan CRM API",
    description="Production stage automation backend for Aslan CRM",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(AutomationError, http_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Include routers
app.include_router(automation.router, prefix="/api")
app.include_router(automation_settings.router, prefix="/api")
app.include_router(orders.router, prefix="/api")
app.include_router(tasks.router, prefix="/api")
app.include_router(notifications.router, prefix="/api")

# Health / readiness endpoints
app.include_router(health.router, prefix="", tags=["Health"])
