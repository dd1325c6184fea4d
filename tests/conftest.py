from typing import Any, Dict, List, Optional

import pytest
from mongomock_motor import AsyncMongoMockClient

from filterpro.config import DATASOURCES_COLLECTION, FILTERS_COLLECTION
from filterpro.models import DatasourceType
from filterpro.services.resolver import DependencyResolver
from filterpro.services.sync import SyncEngine
from filterpro.store import Store

COUNTRIES = [
    {"code": "BR", "value": "BR", "label": "Brazil"},
    {"code": "US", "value": "US", "label": "United States"},
    {"code": "AR", "value": "AR", "label": "Argentina"},
]

CITIES = [
    {"code": "sao-paulo", "value": "sao-paulo", "label": "Sao Paulo", "country": "BR"},
    {"code": "rio", "value": "rio", "label": "Rio de Janeiro", "country": "BR"},
    {"code": "brasilia", "value": "brasilia", "label": "Brasilia", "country": "BR"},
    {"code": "belo-horizonte", "value": "belo-horizonte", "label": "Belo Horizonte", "country": "BR"},
    {"code": "california", "value": "california", "label": "California", "country": "US"},
    {"code": "texas", "value": "texas", "label": "Texas", "country": "US"},
    {"code": "florida", "value": "florida", "label": "Florida", "country": "US"},
    {"code": "new-york", "value": "new-york", "label": "New York", "country": "US"},
]


class FakeFetcher:
    """Stands in for an external source: returns `rows`, or raises `error`."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None):
        self.rows = rows or []
        self.error = error
        self.calls = 0

    async def __call__(self, config) -> List[Dict[str, Any]]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [dict(row) for row in self.rows]


@pytest.fixture
def db():
    return AsyncMongoMockClient()["filterpro_test"]


@pytest.fixture
def store():
    return Store()


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def sync_engine(db, store, fake_fetcher):
    return SyncEngine(db, store, fetchers={DatasourceType.REST_API: fake_fetcher})


@pytest.fixture
def resolver(db, sync_engine):
    return DependencyResolver(db, sync_engine)


def rest_datasource(datasource_id: str = "products", **overrides) -> Dict[str, Any]:
    doc = {
        "projectKey": "shop",
        "id": datasource_id,
        "name": datasource_id.title(),
        "type": "rest_api",
        "enabled": True,
        "config": {"baseUrl": "https://api.example.com/items"},
        "syncConfig": {"enabled": True, "interval": "1h", "externalCodeField": "code"},
    }
    doc.update(overrides)
    return doc


def static_datasource(datasource_id: str, options: List[Dict[str, Any]], **overrides) -> Dict[str, Any]:
    doc = {
        "projectKey": "geo",
        "id": datasource_id,
        "name": datasource_id.title(),
        "type": "static",
        "enabled": True,
        "config": {"options": options},
        "syncConfig": {"enabled": False, "externalCodeField": "code"},
    }
    doc.update(overrides)
    return doc


async def insert_datasource(db, doc: Dict[str, Any]) -> Dict[str, Any]:
    await db[DATASOURCES_COLLECTION].insert_one(dict(doc))
    return doc


async def insert_filter(db, **fields) -> Dict[str, Any]:
    doc = {"projectKey": "geo", "type": "select", "active": True, "order": 0, "dependencies": []}
    doc.update(fields)
    doc.setdefault("name", doc["slug"].title())
    await db[FILTERS_COLLECTION].insert_one(dict(doc))
    return doc


@pytest.fixture
async def geo_project(db, sync_engine):
    """
    Countries and cities, synced into the Option Store, with a mutual
    dependency between the 'country' and 'city' filters.
    """
    await insert_datasource(db, static_datasource("countries", COUNTRIES))
    await insert_datasource(db, static_datasource("cities", CITIES))
    await sync_engine.sync_datasource("countries")
    await sync_engine.sync_datasource("cities")

    await insert_filter(
        db,
        slug="country",
        dataSource="countries",
        order=1,
        dependencies=[
            {"filterSlug": "city", "mode": "affects"},
            {
                "filterSlug": "city",
                "mode": "affected-by",
                "mapping": {"myField": "value", "targetMetadataField": "country"},
            },
        ],
    )
    await insert_filter(
        db,
        slug="city",
        dataSource={"datasourceId": "cities"},
        order=2,
        queryKey="location.city",
        dependencies=[
            {
                "filterSlug": "country",
                "mode": "affected-by",
                "mapping": {"myMetadataField": "country", "targetField": "value"},
            },
        ],
    )
    return db
