from filterpro.services.query_generator import build_query_response, describe_query, generate_query


def test_scalar_and_range():
    query = generate_query({"country": "BR", "price": {"from": 100, "to": 500}})
    assert query == {"country": "BR", "price": {"$gte": 100, "$lte": 500}}


def test_list_becomes_in():
    assert generate_query({"tags": ["a", "b"]}) == {"tags": {"$in": ["a", "b"]}}


def test_empty_values_are_omitted():
    assert generate_query({"empty": "", "none": None}) == {}


def test_partial_range_keeps_present_bound():
    assert generate_query({"price": {"from": 10, "to": ""}}) == {"price": {"$gte": 10}}
    assert generate_query({"price": {"to": 0}}) == {"price": {"$lte": 0}}


def test_range_without_bounds_is_omitted():
    assert generate_query({"price": {"from": None, "to": ""}}) == {}


def test_key_map_renames_output_keys():
    query = generate_query({"city": "rio", "country": "BR"}, {"city": "location.city"})
    assert query == {"location.city": "rio", "country": "BR"}


def test_booleans_and_zero_are_kept():
    assert generate_query({"active": False, "stock": 0}) == {"active": False, "stock": 0}


def test_build_query_response():
    response = build_query_response("shop", {"tags": ["a"], "price": {"from": 1}}, None)

    assert response["projectKey"] == "shop"
    assert response["format"] == "mongodb"
    assert response["query"] == {"tags": {"$in": ["a"]}, "price": {"$gte": 1}}
    assert response["human"] == "tags in [a] AND price >= 1"


def test_describe_empty_query():
    assert describe_query({}) == "(no filters)"
