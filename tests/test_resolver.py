import pytest

from filterpro.errors import ConfigurationError, FilterNotFoundError
from filterpro.models import SkipReason
from filterpro.services.resolver import split_values
from tests.conftest import CITIES, COUNTRIES, insert_datasource, insert_filter, rest_datasource, static_datasource

BRAZILIAN_CITIES = ["belo-horizonte", "brasilia", "rio", "sao-paulo"]


def values_of(result):
    return sorted(option["value"] for option in result.options)


async def test_no_params_returns_full_option_set(geo_project, resolver):
    result = await resolver.resolve_options("geo", "city", {})

    assert values_of(result) == sorted(c["value"] for c in CITIES)
    assert result.applied == []
    assert result.skipped == []


async def test_options_are_sorted_by_label(geo_project, resolver):
    result = await resolver.resolve_options("geo", "country")
    assert [o["label"] for o in result.options] == ["Argentina", "Brazil", "United States"]
    assert set(result.options[0]) == {"value", "label", "metadata"}


async def test_country_narrows_cities_and_back(geo_project, resolver):
    cities = await resolver.resolve_options("geo", "city", {"country": "BR"})
    assert values_of(cities) == BRAZILIAN_CITIES
    assert cities.applied[0].query_key == "metadata.country"
    assert cities.applied[0].values == ["BR"]

    for city in BRAZILIAN_CITIES:
        countries = await resolver.resolve_options("geo", "country", {"city": city})
        assert values_of(countries) == ["BR"]


@pytest.mark.parametrize("raw", ["BR", "br", "brazil", "BRAZIL", "Brazil"])
async def test_country_param_is_case_insensitive(geo_project, resolver, raw):
    result = await resolver.resolve_options("geo", "city", {"country": raw})
    assert values_of(result) == BRAZILIAN_CITIES


async def test_multiple_values_use_in(geo_project, resolver):
    result = await resolver.resolve_options("geo", "city", {"country": "BR,US"})

    assert len(result.options) == 8
    assert sorted(result.applied[0].values) == ["BR", "US"]


async def test_list_values_are_accepted(geo_project, resolver):
    result = await resolver.resolve_options("geo", "city", {"country": ["US"]})
    assert values_of(result) == ["california", "florida", "new-york", "texas"]


async def test_unrelated_param_is_skipped(geo_project, resolver):
    result = await resolver.resolve_options("geo", "city", {"page": "2"})

    assert len(result.options) == 8
    assert result.skipped[0].reason == SkipReason.NO_DEPENDENCY


async def test_empty_param_is_skipped(geo_project, resolver):
    result = await resolver.resolve_options("geo", "city", {"country": " , "})
    assert len(result.options) == 8
    assert result.skipped[0].reason == SkipReason.EMPTY_VALUE


async def test_unknown_value_is_skipped(geo_project, resolver):
    result = await resolver.resolve_options("geo", "city", {"country": "Atlantis"})
    assert len(result.options) == 8
    assert result.skipped[0].reason == SkipReason.NO_SOURCE_ROWS


@pytest.mark.parametrize(
    "mapping",
    [
        {"myField": "value", "myMetadataField": "country", "targetField": "value"},
        {"targetField": "value"},
        {"myMetadataField": "country"},
        {"myMetadataField": "country", "targetField": "value", "targetMetadataField": "x"},
    ],
)
async def test_invalid_mapping_is_skipped(geo_project, resolver, mapping):
    await geo_project["filters"].update_one(
        {"slug": "city"},
        {"$set": {"dependencies": [{"filterSlug": "country", "mode": "affected-by", "mapping": mapping}]}},
    )
    result = await resolver.resolve_options("geo", "city", {"country": "BR"})

    assert len(result.options) == 8
    assert result.applied == []
    assert result.skipped[0].reason == SkipReason.INVALID_MAPPING


async def test_affecting_filter_without_datasource_is_skipped(geo_project, resolver, db):
    await insert_filter(db, slug="region")
    await db["filters"].update_one(
        {"slug": "city"},
        {"$push": {"dependencies": {
            "filterSlug": "region",
            "mode": "affected-by",
            "mapping": {"myMetadataField": "region", "targetField": "value"},
        }}},
    )
    result = await resolver.resolve_options("geo", "city", {"region": "south", "country": "US"})

    assert values_of(result) == ["california", "florida", "new-york", "texas"]
    assert [s.reason for s in result.skipped] == [SkipReason.AFFECTING_DATASOURCE_MISSING]


async def test_disabled_records_are_not_offered(geo_project, resolver, sync_engine, db):
    await db["datasources"].update_one(
        {"id": "cities"}, {"$set": {"config.options": [c for c in CITIES if c["code"] != "rio"]}}
    )
    await sync_engine.sync_datasource("cities")

    result = await resolver.resolve_options("geo", "city", {"country": "BR"})
    assert values_of(result) == ["belo-horizonte", "brasilia", "sao-paulo"]

    countries = await resolver.resolve_options("geo", "country", {"city": "rio"})
    assert len(countries.options) == 3
    assert countries.skipped[0].reason == SkipReason.NO_SOURCE_ROWS


async def test_unknown_filter_raises(resolver):
    with pytest.raises(FilterNotFoundError):
        await resolver.resolve_options("geo", "missing", {})


async def test_filter_without_datasource_raises(db, resolver):
    await insert_filter(db, slug="free-text", type="text")
    with pytest.raises(ConfigurationError):
        await resolver.resolve_options("geo", "free-text", {})


async def test_legacy_options_config_datasource(geo_project, resolver, db):
    await insert_filter(db, slug="nation", optionsConfig={"dynamic": {"datasourceId": "countries"}})
    result = await resolver.resolve_options("geo", "nation")
    assert values_of(result) == ["AR", "BR", "US"]


async def test_unsynced_static_datasource_serves_config(db, resolver):
    await insert_datasource(db, static_datasource("sizes", [{"value": "s", "label": "Small"}, {"value": "m"}]))
    await insert_filter(db, slug="size", dataSource="sizes")

    result = await resolver.resolve_options("geo", "size")

    assert result.options == [
        {"value": "s", "label": "Small", "metadata": {}},
        {"value": "m", "label": "m", "metadata": {}},
    ]


async def test_unsynced_datasource_triggers_initial_sync(db, resolver, fake_fetcher):
    await insert_datasource(db, rest_datasource(projectKey="geo"))
    await insert_filter(db, slug="product", dataSource="products")
    fake_fetcher.rows = [{"code": "p1", "label": "Pen", "value": "pen"}]

    result = await resolver.resolve_options("geo", "product")

    assert fake_fetcher.calls == 1
    assert values_of(result) == ["pen"]
    history = await db["sync_history"].find_one({"datasourceId": "products"})
    assert history["triggeredBy"] == "system"


async def test_failed_initial_sync_returns_empty(db, resolver, fake_fetcher):
    await insert_datasource(db, rest_datasource(projectKey="geo"))
    await insert_filter(db, slug="product", dataSource="products")
    fake_fetcher.error = RuntimeError("down")

    result = await resolver.resolve_options("geo", "product")
    assert result.options == []


async def test_validate_filter_dependencies(geo_project, resolver, db):
    await db["filters"].update_one(
        {"slug": "city"},
        {"$push": {"dependencies": {"filterSlug": "ghost", "mode": "affected-by", "mapping": {"myField": "value"}}}},
    )
    report = await resolver.validate_filter_dependencies("geo", "city")

    assert report[0] == {"filterSlug": "country", "mode": "affected-by", "valid": True, "problems": []}
    assert report[1]["valid"] is False
    assert len(report[1]["problems"]) == 2


def test_split_values():
    assert split_values("BR, US,,") == ["BR", "US"]
    assert split_values(None) == []
    assert split_values(["a", " "]) == ["a"]
