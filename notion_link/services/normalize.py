"""
Projection of raw Notion API objects into stable response shapes.

All extraction is best-effort: anything missing or unexpected becomes ``None``.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

JSON = Dict[str, Any]


def _plain_text(rich_text: Any) -> Optional[str]:
    if not isinstance(rich_text, list):
        return None
    text = "".join(
        part.get("plain_text", "") for part in rich_text if isinstance(part, dict)
    )
    return text or None


def extract_icon(icon: Any) -> Optional[str]:
    if not isinstance(icon, dict):
        return None
    kind = icon.get("type")
    if kind == "emoji":
        return icon.get("emoji")
    if kind in ("external", "file"):
        payload = icon.get(kind)
        if isinstance(payload, dict):
            return payload.get("url")
    return None


def page_title(page: JSON) -> Optional[str]:
    properties = page.get("properties")
    if not isinstance(properties, dict):
        return None
    for prop in properties.values():
        if isinstance(prop, dict) and prop.get("type") == "title":
            return _plain_text(prop.get("title"))
    return None


def normalize_page(page: JSON) -> JSON:
    parent = page.get("parent")
    return {
        "id": page.get("id"),
        "title": page_title(page),
        "url": page.get("url"),
        "icon": extract_icon(page.get("icon")),
        "last_edited": page.get("last_edited_time"),
        "parent_type": parent.get("type") if isinstance(parent, dict) else None,
        "archived": bool(page.get("archived", False)),
    }


def normalize_database(database: JSON) -> JSON:
    return {
        "id": database.get("id"),
        "title": _plain_text(database.get("title")),
        "url": database.get("url"),
        "icon": extract_icon(database.get("icon")),
        "description": _plain_text(database.get("description")),
    }


def normalize_user(user: JSON) -> JSON:
    return {
        "id": user.get("id"),
        "name": user.get("name"),
        "type": user.get("type"),
        "avatar_url": user.get("avatar_url"),
    }


def normalize_results(payload: JSON) -> JSON:
    """Split a search or query listing into pages and databases."""
    pages: List[JSON] = []
    databases: List[JSON] = []
    results: Iterable[Any] = payload.get("results") or []
    for item in results:
        if not isinstance(item, dict):
            continue
        kind = item.get("object")
        if kind == "page":
            pages.append(normalize_page(item))
        elif kind == "database":
            databases.append(normalize_database(item))
    return {
        "pages": pages,
        "databases": databases,
        "has_more": bool(payload.get("has_more", False)),
        "next_cursor": payload.get("next_cursor"),
    }


def normalize_user_list(payload: JSON) -> JSON:
    return {
        "users": [
            normalize_user(user)
            for user in payload.get("results") or []
            if isinstance(user, dict)
        ],
        "has_more": bool(payload.get("has_more", False)),
        "next_cursor": payload.get("next_cursor"),
    }


__all__ = [
    "extract_icon",
    "normalize_database",
    "normalize_page",
    "normalize_results",
    "normalize_user",
    "normalize_user_list",
    "page_title",
]
