# filterpro/routes.py

from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import ORJSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from filterpro.config import DATASOURCES_COLLECTION, DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT
from filterpro.database import stringify_ids
from filterpro.dependencies import get_db, get_resolver, get_scheduler, get_store, get_sync_engine
from filterpro.errors import (
    ConfigurationError,
    ExternalFetchError,
    FilterProError,
    NotFoundError,
    QueryValidationError,
    SyncInProgressError,
)
from filterpro.models import (
    DatasourceCreate,
    DatasourceUpdate,
    GenerateQueryRequest,
    SyncStatus,
    TriggeredBy,
)
from filterpro.services.proxy import proxy_options
from filterpro.services.query_generator import build_query_response
from filterpro.services.resolver import DependencyResolver
from filterpro.services.scheduler import SyncScheduler
from filterpro.services.sync import SyncEngine
from filterpro.store import Store

router = APIRouter()


def to_http_error(e: FilterProError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, SyncInProgressError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, (ConfigurationError, QueryValidationError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, ExternalFetchError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


def collect_params(request: Request) -> Dict[str, str]:
    """Query params as a dict; repeated keys (?a=1&a=2) are joined with commas."""
    params: Dict[str, str] = {}
    for key in request.query_params.keys():
        params[key] = ",".join(request.query_params.getlist(key))
    return params


@router.get("/health/ready", tags=["Health"])
def get_readiness_status(store: Store = Depends(get_store)):
    """
    Ready once the sync schedules are initialised.
    """
    if store.is_ready:
        return {"status": "ready"}
    return ORJSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "loading"}
    )

# --- FILTERS ---

@router.get("/projects/{project_key}/filters", tags=["Filters"])
async def list_filters(project_key: str, resolver: DependencyResolver = Depends(get_resolver)):
    filters = await resolver.list_filters(project_key)
    return [f.to_document() for f in filters]

@router.get("/projects/{project_key}/filters/{slug}/options", tags=["Filters"])
async def get_filter_options(
    project_key: str,
    slug: str,
    request: Request,
    resolver: DependencyResolver = Depends(get_resolver),
):
    """
    Options of a filter as [{value, label, metadata}], narrowed by the values
    selected in the other filters (query params keyed by filter slug).
    Params that were applied or skipped are listed in response headers.
    """
    try:
        result = await resolver.resolve_options(project_key, slug, collect_params(request))
    except FilterProError as e:
        raise to_http_error(e)
    headers = {
        "X-Applied-Params": ",".join(a.param for a in result.applied),
        "X-Skipped-Params": ",".join(f"{s.param}:{s.reason.value}" for s in result.skipped),
    }
    return ORJSONResponse(content=result.options, headers=headers)

@router.post("/projects/{project_key}/filters/{slug}/validate", tags=["Filters"])
async def validate_filter(project_key: str, slug: str, resolver: DependencyResolver = Depends(get_resolver)):
    """
    Reports dependency mappings the resolver would skip.
    """
    try:
        report = await resolver.validate_filter_dependencies(project_key, slug)
    except FilterProError as e:
        raise to_http_error(e)
    return {"valid": all(item["valid"] for item in report), "dependencies": report}

@router.post("/projects/{project_key}/generate-query", tags=["Filters"])
async def generate_query(
    project_key: str,
    body: GenerateQueryRequest,
    resolver: DependencyResolver = Depends(get_resolver),
):
    filters = await resolver.list_filters(project_key)
    key_map = {f.slug: f.query_key for f in filters if f.query_key}
    query_format = body.options.format if body.options else None
    return build_query_response(project_key, body.filters, query_format, key_map)

# --- DATASOURCES ---

@router.get("/projects/{project_key}/datasources", tags=["Datasources"])
async def list_datasources(project_key: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    docs = await db[DATASOURCES_COLLECTION].find({"projectKey": project_key}).sort("name", 1).to_list(length=None)
    return stringify_ids(docs)

@router.post("/projects/{project_key}/datasources", tags=["Datasources"], status_code=status.HTTP_201_CREATED)
async def create_datasource(
    project_key: str,
    payload: DatasourceCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    doc = {"projectKey": project_key, **payload.to_document()}
    try:
        await db[DATASOURCES_COLLECTION].insert_one(doc)
    except DuplicateKeyError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Datasource '{payload.id}' already exists in project '{project_key}'"
        )
    await scheduler.update_schedule(payload.id)
    return stringify_ids([doc])[0]

@router.patch("/projects/{project_key}/datasources/{datasource_id}", tags=["Datasources"])
async def update_datasource(
    project_key: str,
    datasource_id: str,
    payload: DatasourceUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    changes = payload.to_document()
    collection = db[DATASOURCES_COLLECTION]
    selector = {"projectKey": project_key, "id": datasource_id}
    if changes:
        result = await collection.update_one(selector, {"$set": changes})
        if result.matched_count == 0:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Datasource '{datasource_id}' not found")
    doc = await collection.find_one(selector)
    if not doc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Datasource '{datasource_id}' not found")
    await scheduler.update_schedule(datasource_id)
    return stringify_ids([doc])[0]

@router.delete("/projects/{project_key}/datasources/{datasource_id}", tags=["Datasources"])
async def delete_datasource(
    project_key: str,
    datasource_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    """
    Removes the datasource configuration and its schedule. Synced option
    records are kept.
    """
    result = await db[DATASOURCES_COLLECTION].delete_one({"projectKey": project_key, "id": datasource_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Datasource '{datasource_id}' not found")
    await scheduler.update_schedule(datasource_id)
    return {"success": True, "message": f"Datasource '{datasource_id}' deleted"}

@router.get("/datasources/{datasource_id}/options", tags=["Datasources"])
async def get_datasource_options(
    datasource_id: str,
    request: Request,
    sync_engine: SyncEngine = Depends(get_sync_engine),
):
    """
    Reads options directly from the external source, without the Option Store.
    """
    try:
        return await proxy_options(sync_engine, datasource_id, collect_params(request))
    except FilterProError as e:
        raise to_http_error(e)

@router.post("/datasources/{datasource_id}/sync", tags=["Sync"])
async def sync_datasource(datasource_id: str, sync_engine: SyncEngine = Depends(get_sync_engine)):
    try:
        result = await sync_engine.sync_datasource(datasource_id, TriggeredBy.MANUAL)
    except FilterProError as e:
        raise to_http_error(e)

    stats = result.stats.to_document()
    if result.status == SyncStatus.ERROR:
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": result.error, "stats": stats},
        )
    return {"success": True, "message": f"Datasource '{datasource_id}' synced", "stats": stats}

@router.get("/datasources/{datasource_id}/sync-history", tags=["Sync"])
async def get_sync_history(
    datasource_id: str,
    limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
    sync_engine: SyncEngine = Depends(get_sync_engine),
):
    return await sync_engine.get_sync_history(datasource_id, limit)

@router.get("/datasources/{datasource_id}/data", tags=["Sync"])
async def get_datasource_data(
    datasource_id: str,
    request: Request,
    sync_engine: SyncEngine = Depends(get_sync_engine),
):
    """
    Raw synced records, disabled ones included. Query params are equality
    filters on value, label, externalCode, enabled or metadata.<path>.
    """
    try:
        return await sync_engine.get_datasource_data(datasource_id, dict(request.query_params))
    except FilterProError as e:
        raise to_http_error(e)

# --- SCHEDULER ADMIN ---

@router.get("/admin/cron-jobs", tags=["Admin"])
def get_cron_jobs(scheduler: SyncScheduler = Depends(get_scheduler)):
    jobs = scheduler.get_active_jobs()
    return {"totalJobs": len(jobs), "jobs": jobs}

@router.post("/admin/cron-jobs/reinitialize", tags=["Admin"])
async def reinitialize_cron_jobs(scheduler: SyncScheduler = Depends(get_scheduler)):
    jobs = await scheduler.reinitialize()
    return {
        "success": True,
        "message": "Sync schedules reinitialized",
        "totalJobs": len(jobs),
        "jobs": jobs,
    }
