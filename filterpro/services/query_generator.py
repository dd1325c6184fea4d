# filterpro/services/query_generator.py
from typing import Any, Dict, Optional

from filterpro.config import DEFAULT_QUERY_FORMAT


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _range_condition(value: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    condition = {}
    if not _is_empty(value.get("from")):
        condition["$gte"] = value["from"]
    if not _is_empty(value.get("to")):
        condition["$lte"] = value["to"]
    return condition or None


def generate_query(filters: Dict[str, Any], key_map: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Turns the final filter selection into a MongoDB-style query.

    - empty values are left out
    - lists become $in
    - {from, to} ranges become $gte/$lte with only the bounds given
    - anything else is an equality

    Keys are the filter's queryKey when key_map has one, else the slug.
    """
    key_map = key_map or {}
    query: Dict[str, Any] = {}
    for slug, value in filters.items():
        if _is_empty(value):
            continue
        key = key_map.get(slug) or slug

        if isinstance(value, list):
            query[key] = {"$in": value}
        elif isinstance(value, dict) and ("from" in value or "to" in value):
            condition = _range_condition(value)
            if condition:
                query[key] = condition
        else:
            query[key] = value
    return query


def describe_query(query: Dict[str, Any]) -> str:
    """One-line readable form of a generated query, for display next to it."""
    parts = []
    for key, condition in query.items():
        if isinstance(condition, dict) and "$in" in condition:
            parts.append(f"{key} in [{', '.join(str(v) for v in condition['$in'])}]")
        elif isinstance(condition, dict) and ("$gte" in condition or "$lte" in condition):
            bounds = []
            if "$gte" in condition:
                bounds.append(f">= {condition['$gte']}")
            if "$lte" in condition:
                bounds.append(f"<= {condition['$lte']}")
            parts.append(f"{key} {' and '.join(bounds)}")
        else:
            parts.append(f"{key} = {condition}")
    return " AND ".join(parts) if parts else "(no filters)"


def build_query_response(
    project_key: str,
    filters: Dict[str, Any],
    query_format: str = DEFAULT_QUERY_FORMAT,
    key_map: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    query = generate_query(filters, key_map)
    return {
        "query": query,
        "projectKey": project_key,
        "format": query_format or DEFAULT_QUERY_FORMAT,
        "human": describe_query(query),
    }
