"""
FastAPI application factory.

Run with: uvicorn marketplace.api.app:create_app --factory
"""

import logging

from fastapi import FastAPI
from sqlalchemy.orm import Session

from marketplace.api.routes import catalog, jobs, payments, requests, subscriptions
from marketplace.config.settings import configure_logging
from marketplace.models.package import Package
from marketplace.platform.errors import register_error_handling
from marketplace.services.catalog_service import CatalogService

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Credit Marketplace API")
    register_error_handling(app)

    app.include_router(catalog.router)
    app.include_router(requests.router)
    app.include_router(subscriptions.router)
    app.include_router(payments.router)
    app.include_router(jobs.router)
    return app


def bootstrap(session: Session) -> Package:
    """First-boot data: the free registration package."""
    package = CatalogService(session).ensure_free_package()
    logger.info("Bootstrap complete", extra={"free_package_id": package.id})
    return package
