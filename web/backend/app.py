#!/usr/bin/env python3
"""
Herald Notification API - FastAPI Application

HTTP surface of the notification engine: send, list and read
notifications, manage types and preferences, execute actions and
record channel feedback.

Usage:
    python -m web.backend.app

Then open:
    - http://localhost:8080/docs - API Documentation (Swagger UI)
    - http://localhost:8080/redoc - Alternative API Documentation
"""

import logging

from fastapi import FastAPI, HTTPException

from notification.errors import NotificationError
from .config import get_config
from .exceptions import (
    notification_exception_handler,
    value_error_handler,
    http_exception_handler,
    general_exception_handler
)
from .routers import (
    send_router,
    types_router,
    preferences_router,
    actions_router,
    addresses_router,
    notifications_router
)
from .routers.actions import add_rate_limit_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Herald Notification API",
    description="Multi-tenant notification delivery, batching and actions",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure rate limiting
add_rate_limit_handlers(app)

# Register exception handlers
app.add_exception_handler(NotificationError, notification_exception_handler)
app.add_exception_handler(ValueError, value_error_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

# Include routers; notifications last so /{notification_id} does not shadow fixed paths
app.include_router(send_router)
app.include_router(types_router)
app.include_router(preferences_router)
app.include_router(actions_router)
app.include_router(addresses_router)
app.include_router(notifications_router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "herald-api"}


def main():
    """Run the web server."""
    import uvicorn

    config = get_config()
    logger.info(f"Starting Herald API on {config.web.host}:{config.web.port}")
    logger.info(f"API Docs: http://{config.web.host}:{config.web.port}/docs")

    uvicorn.run(
        "web.backend.app:app",
        host=config.web.host,
        port=config.web.port,
        reload=False,
        log_level="info"
    )


if __name__ == "__main__":
    main()
