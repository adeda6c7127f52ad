"""REST endpoints over the catalog and the migration tooling."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .cache import EntityCache
from .catalog import Catalog, CourseDetail, EnrollmentDetail
from .config import get_settings
from .errors import MissingKeyError, StoreError
from .migration import MigrationEngine
from .paths import get_registry
from .resolver import EntityResolver
from .store import DocumentStore, build_store

router = APIRouter(prefix="/api", tags=["catalog"])
logger = logging.getLogger(__name__)


@lru_cache
def get_store() -> DocumentStore:
    return build_store(get_settings())


@lru_cache
def get_resolver() -> EntityResolver:
    settings = get_settings()
    return EntityResolver(
        get_store(),
        EntityCache(ttl_seconds=settings.cache_ttl_seconds),
        get_registry(),
        write_back=settings.write_back_enabled,
    )


def get_catalog(resolver: EntityResolver = Depends(get_resolver)) -> Catalog:
    return Catalog(resolver)


def get_migration_engine(store: DocumentStore = Depends(get_store)) -> MigrationEngine:
    return MigrationEngine(store, get_registry())


def _bad_keys(exc: MissingKeyError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


@router.get("/courses/{course_id}", response_model=CourseDetail)
async def get_course(
    course_id: str,
    with_modules: bool = Query(default=True),
    catalog: Catalog = Depends(get_catalog),
) -> CourseDetail:
    try:
        detail = await catalog.fetch_course(course_id, with_modules=with_modules)
    except MissingKeyError as exc:
        raise _bad_keys(exc) from exc
    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Course {course_id} not found")
    return detail


@router.get("/courses/{course_id}/modules")
async def list_course_modules(course_id: str, catalog: Catalog = Depends(get_catalog)) -> Dict[str, Any]:
    try:
        listing = await catalog.fetch_course_modules(course_id)
    except MissingKeyError as exc:
        raise _bad_keys(exc) from exc
    return {
        "modules": [module.to_document() for module in listing.items],
        "provenance": listing.provenance,
    }


@router.get("/courses/{course_id}/modules/{module_id}")
async def get_module(course_id: str, module_id: str, catalog: Catalog = Depends(get_catalog)) -> Dict[str, Any]:
    try:
        result = await catalog.fetch_module(course_id, module_id)
    except MissingKeyError as exc:
        raise _bad_keys(exc) from exc
    if not result.found or result.data is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Module {module_id} not found in course {course_id}",
        )
    return {"module": result.data.to_document(), "provenance": result.provenance, "source": result.source}


@router.get("/users/{user_id}/enrollments", response_model=List[EnrollmentDetail])
async def list_user_enrollments(
    user_id: str,
    with_course_details: bool = Query(default=False),
    catalog: Catalog = Depends(get_catalog),
) -> List[EnrollmentDetail]:
    try:
        return await catalog.fetch_user_enrollments(user_id, with_course_details=with_course_details)
    except MissingKeyError as exc:
        raise _bad_keys(exc) from exc


@router.get("/users/{user_id}/progress/{course_id}")
async def get_user_progress(
    user_id: str,
    course_id: str,
    create_if_missing: bool = Query(default=False),
    catalog: Catalog = Depends(get_catalog),
) -> Dict[str, Any]:
    try:
        record = await catalog.fetch_user_progress(user_id, course_id, create_if_missing=create_if_missing)
    except MissingKeyError as exc:
        raise _bad_keys(exc) from exc
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No progress for user {user_id} in course {course_id}",
        )
    return record.to_document()


@router.post("/admin/migrations/standardize")
async def standardize_database(engine: MigrationEngine = Depends(get_migration_engine)) -> Dict[str, Any]:
    report = await engine.run_database_standardization()
    logger.info("Standardization requested over HTTP: success=%s", report.get("success"))
    return report


@router.post("/admin/migrations/legacy")
async def migrate_legacy_data(
    entity: Optional[str] = Query(default=None),
    engine: MigrationEngine = Depends(get_migration_engine),
) -> Dict[str, Any]:
    if entity is None:
        return await engine.migrate_all_data()
    try:
        result = await engine.migrate(entity)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except StoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return result.model_dump()


__all__ = ["get_catalog", "get_migration_engine", "get_resolver", "get_store", "router"]
