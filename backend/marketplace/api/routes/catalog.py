"""
Catalog API routes: packages and service types available to clients.
"""

from typing import List

from fastapi import APIRouter, Depends

from marketplace.api.dependencies.db import get_db_session
from marketplace.api.schemas.subscriptions import PackageResponse, ServiceTypeResponse
from marketplace.models.package import Package
from marketplace.services.catalog_service import CatalogService

router = APIRouter(prefix="/api", tags=["catalog"])


def package_to_response(package: Package) -> PackageResponse:
    return PackageResponse(
        id=package.id,
        name=package.name,
        description=package.description,
        price=float(package.price or 0),
        credits=package.credits,
        duration_days=package.duration_days,
        features=package.features or [],
        support_all_services=package.support_all_services,
        service_type_ids=sorted(package.service_type_ids()),
    )


@router.get("/packages", response_model=List[PackageResponse])
async def list_packages(db_session=Depends(get_db_session)):
    """Purchasable packages. The free registration package is not listed."""
    packages = CatalogService(db_session).list_packages()
    return [package_to_response(p) for p in packages]


@router.get("/service-types", response_model=List[ServiceTypeResponse])
async def list_service_types(db_session=Depends(get_db_session)):
    service_types = CatalogService(db_session).list_service_types()
    return [ServiceTypeResponse.model_validate(st) for st in service_types]
