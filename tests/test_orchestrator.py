try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from typing import Any, Dict, List, Optional

import pytest

from notion_link.core.config import AppSettings
from notion_link.core.errors import (
    InvalidRequestError,
    RateLimitedError,
    UnsupportedOperationError,
    UpstreamAuthenticationError,
    UpstreamNetworkError,
)
from notion_link.services import OPERATION_ALIASES, RequestOrchestrator

PAGE = {
    "object": "page",
    "id": "page-1",
    "url": "https://www.notion.so/page-1",
    "last_edited_time": "2024-05-01T10:00:00.000Z",
    "archived": False,
    "parent": {"type": "workspace", "workspace": True},
    "icon": {"type": "emoji", "emoji": "📝"},
    "properties": {
        "Name": {
            "type": "title",
            "title": [{"plain_text": "Meeting "}, {"plain_text": "notes"}],
        },
        "Status": {"type": "select", "select": None},
    },
}

DATABASE = {
    "object": "database",
    "id": "db-1",
    "url": "https://www.notion.so/db-1",
    "title": [{"plain_text": "Tasks"}],
    "description": [],
    "icon": {"type": "external", "external": {"url": "https://img.test/tasks.png"}},
}


class DummyVault:
    def __init__(self) -> None:
        self.current = "token-1"
        self.refreshes: List[Optional[str]] = []
        self.touched: List[str] = []

    async def get_valid_access_token(self, user_id: str) -> str:
        return self.current

    async def refresh_access_token(self, user_id: str, *, rejected_token: Optional[str] = None) -> str:
        self.refreshes.append(rejected_token)
        self.current = f"token-{len(self.refreshes) + 1}"
        return self.current

    def touch(self, user_id: str) -> None:
        self.touched.append(user_id)


class DummyNotionAPI:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.rejected_tokens: set = set()
        self.failures: List[Exception] = []

    def _record(self, token: str, name: str, **kwargs: Any) -> None:
        self.calls.append({"token": token, "name": name, **kwargs})
        if token in self.rejected_tokens:
            raise UpstreamAuthenticationError()
        if self.failures:
            raise self.failures.pop(0)

    async def search(self, token, *, query=None, object_type=None, page_size=10, start_cursor=None):
        self._record(token, "search", query=query, object_type=object_type, page_size=page_size)
        return {
            "object": "list",
            "results": [PAGE, DATABASE, {"object": "block", "id": "ignored"}],
            "has_more": True,
            "next_cursor": "cursor-2",
        }

    async def get_page(self, token, page_id):
        self._record(token, "get_page", page_id=page_id)
        return PAGE

    async def get_database(self, token, database_id):
        self._record(token, "get_database", database_id=database_id)
        return DATABASE

    async def query_database(self, token, database_id, *, filter=None, sorts=None, page_size=10, start_cursor=None):
        self._record(token, "query_database", database_id=database_id, filter=filter, sorts=sorts)
        return {"results": [PAGE], "has_more": False, "next_cursor": None}

    async def get_bot_user(self, token):
        self._record(token, "get_bot_user")
        return {"object": "user", "id": "bot-1", "name": "Link", "type": "bot"}

    async def list_users(self, token, *, page_size=None, start_cursor=None):
        self._record(token, "list_users", page_size=page_size)
        return {
            "results": [
                {"id": "u1", "name": "Ada", "type": "person", "avatar_url": "https://img.test/ada.png"}
            ],
            "has_more": False,
            "next_cursor": None,
        }


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture
def parts(settings: AppSettings):
    vault = DummyVault()
    api = DummyNotionAPI()
    orchestrator = RequestOrchestrator(vault, api, settings.tokens, sleep=_no_sleep)
    return orchestrator, vault, api


@pytest.mark.asyncio
async def test_search_partitions_pages_and_databases(parts) -> None:
    orchestrator, vault, api = parts

    result = await orchestrator.execute("user-1", "search", {"query": "notes"})

    assert result == {
        "pages": [
            {
                "id": "page-1",
                "title": "Meeting notes",
                "url": "https://www.notion.so/page-1",
                "icon": "📝",
                "last_edited": "2024-05-01T10:00:00.000Z",
                "parent_type": "workspace",
                "archived": False,
            }
        ],
        "databases": [
            {
                "id": "db-1",
                "title": "Tasks",
                "url": "https://www.notion.so/db-1",
                "icon": "https://img.test/tasks.png",
                "description": None,
            }
        ],
        "has_more": True,
        "next_cursor": "cursor-2",
    }
    assert api.calls[0]["object_type"] is None
    assert api.calls[0]["page_size"] == 10
    assert vault.touched == ["user-1"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("alias", "object_type"),
    [
        ("list_pages", "page"),
        ("notion-search-pages", "page"),
        ("search_databases", "database"),
        ("list_databases", "database"),
    ],
)
async def test_search_aliases_filter_by_object(parts, alias: str, object_type: str) -> None:
    orchestrator, _, api = parts

    await orchestrator.execute("user-1", alias, {})

    assert api.calls[0]["object_type"] == object_type


@pytest.mark.asyncio
async def test_fetch_and_directory_operations(parts) -> None:
    orchestrator, _, api = parts

    page = await orchestrator.execute("user-1", "fetch_page", {"id": "page-1"})
    database = await orchestrator.execute("user-1", "retrieve_database", {"database_id": "db-1"})
    me = await orchestrator.execute("user-1", "whoami")
    users = await orchestrator.execute("user-1", "get_users", {"page_size": 5})
    rows = await orchestrator.execute(
        "user-1",
        "notion-query-database",
        {"database_id": "db-1", "filter": {"property": "Done", "checkbox": {"equals": True}}},
    )

    assert page["page"]["title"] == "Meeting notes"
    assert database["database"]["title"] == "Tasks"
    assert me == {"user": {"id": "bot-1", "name": "Link", "type": "bot", "avatar_url": None}}
    assert users["users"][0]["name"] == "Ada"
    assert users["has_more"] is False
    assert rows["pages"][0]["id"] == "page-1"
    assert rows["databases"] == []
    assert api.calls[3]["page_size"] == 5
    assert api.calls[4]["filter"] == {"property": "Done", "checkbox": {"equals": True}}


@pytest.mark.asyncio
async def test_unauthorized_call_is_retried_once_after_refresh(parts) -> None:
    orchestrator, vault, api = parts
    api.rejected_tokens = {"token-1"}

    result = await orchestrator.execute("user-1", "get_self")

    assert result["user"]["id"] == "bot-1"
    assert [call["token"] for call in api.calls] == ["token-1", "token-2"]
    assert vault.refreshes == ["token-1"]
    assert vault.touched == ["user-1"]


@pytest.mark.asyncio
async def test_second_unauthorized_response_is_surfaced(parts) -> None:
    orchestrator, vault, api = parts
    api.rejected_tokens = {"token-1", "token-2"}

    with pytest.raises(UpstreamAuthenticationError) as excinfo:
        await orchestrator.execute("user-1", "get_self")

    assert excinfo.value.code == "reconnection_required"
    assert len(api.calls) == 2
    assert len(vault.refreshes) == 1
    assert vault.touched == []


@pytest.mark.asyncio
async def test_transient_failures_are_retried(parts) -> None:
    orchestrator, _, api = parts
    api.failures = [UpstreamNetworkError("reset"), RateLimitedError(retry_after=1.0)]

    result = await orchestrator.execute("user-1", "get_page", {"page_id": "page-1"})

    assert result["page"]["id"] == "page-1"
    assert len(api.calls) == 3


@pytest.mark.asyncio
async def test_transient_failures_surface_after_three_attempts(parts) -> None:
    orchestrator, _, api = parts
    api.failures = [UpstreamNetworkError("reset")] * 3

    with pytest.raises(UpstreamNetworkError) as excinfo:
        await orchestrator.execute("user-1", "get_page", {"page_id": "page-1"})

    assert excinfo.value.retryable is True
    assert len(api.calls) == 3


@pytest.mark.asyncio
async def test_unknown_operation_is_rejected(parts) -> None:
    orchestrator, _, api = parts

    with pytest.raises(UnsupportedOperationError):
        await orchestrator.execute("user-1", "delete_everything", {})

    assert api.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("operation", "params"),
    [
        ("search", {"page_size": 0}),
        ("search", {"page_size": 101}),
        ("get_page", {}),
        ("query_database", {"database_id": "db-1", "sorts": "newest"}),
    ],
)
async def test_invalid_params_are_rejected(parts, operation: str, params: dict) -> None:
    orchestrator, _, api = parts

    with pytest.raises(InvalidRequestError) as excinfo:
        await orchestrator.execute("user-1", operation, params)

    assert excinfo.value.status_code == 400
    assert api.calls == []


def test_every_alias_resolves_to_an_operation(settings: AppSettings) -> None:
    orchestrator = RequestOrchestrator(DummyVault(), DummyNotionAPI(), settings.tokens)

    assert set(OPERATION_ALIASES.values()) == set(orchestrator._operations)
