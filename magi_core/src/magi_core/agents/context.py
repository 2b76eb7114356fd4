"""ISABEL: historical research context from the document search service.

ISABEL does not vote. It fetches documents related to the instrument so the
arbiter sees recent history alongside the unit judgments.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

import httpx
import structlog

from magi_core.agents.protocol import HistoricalContext

if TYPE_CHECKING:
    from magi_core.common.types import InstrumentId

log = structlog.get_logger()

ISABEL_UNIT_ID: Final[str] = "ISABEL"
SEARCH_PATH: Final[str] = "/api/isabel/search-v2"
DEFAULT_DOCUMENT_LIMIT: Final[int] = 15
PER_QUERY_LIMIT: Final[int] = 10


class ContextUnavailableError(Exception):
    """Raised when no search query succeeded."""


@runtime_checkable
class ContextProvider(Protocol):
    async def fetch(self, instrument: InstrumentId, company_name: str) -> HistoricalContext:
        ...


class IsabelContextProvider:
    """Client of the ISABEL search service.

    Runs two queries concurrently, merges the documents, de-duplicates them
    by ``id`` (or ``title``) and keeps at most ``limit``.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        limit: int = DEFAULT_DOCUMENT_LIMIT,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.limit = limit
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @staticmethod
    def queries(instrument: InstrumentId, company_name: str) -> list[str]:
        return [f"{company_name} latest news", f"{instrument} stock analysis"]

    async def _search(
        self, client: httpx.AsyncClient, instrument: InstrumentId, query: str
    ) -> list[dict[str, Any]]:
        response = await client.post(
            SEARCH_PATH,
            json={"symbol": instrument, "query": query, "limit": PER_QUERY_LIMIT},
        )
        response.raise_for_status()
        documents = response.json().get("documents") or []
        return [d for d in documents if isinstance(d, dict)]

    async def fetch(self, instrument: InstrumentId, company_name: str) -> HistoricalContext:
        """Search the index and build the context.

        Raises:
            ContextUnavailableError: Every query failed.
        """
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout_seconds,
            transport=self._transport,
        ) as client:
            results = await asyncio.gather(
                *(self._search(client, instrument, q) for q in self.queries(instrument, company_name)),
                return_exceptions=True,
            )

        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            log.warning("ISABEL query failed", instrument=instrument, error=str(failure))
        if len(failures) == len(results):
            msg = f"All ISABEL queries failed for {instrument}"
            raise ContextUnavailableError(msg)

        unique: dict[str, dict[str, Any]] = {}
        for documents in results:
            if isinstance(documents, BaseException):
                continue
            for doc in documents:
                key = str(doc.get("id") or doc.get("title") or f"anon-{id(doc)}")
                unique.setdefault(key, doc)

        selected = list(unique.values())[: self.limit]
        log.info("ISABEL context fetched", instrument=instrument, documents=len(selected))
        return HistoricalContext(
            documents=selected,
            document_count=len(selected),
            summary=(
                f"Found {len(selected)} relevant documents."
                if selected
                else "No recent documents found."
            ),
        )
