"""
Contraindication Alert Engine - Practice Data Integration
Reads reference tables and intake records from the practice management API
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from contraindication_engine.config.settings import (
    PRACTICE_API_URL, PRACTICE_API_KEY, HTTP_TIMEOUT_SECONDS
)
from contraindication_engine.core.catalog import ReferenceDataSource, CATALOG_TABLES
from contraindication_engine.core.intake import IntakeSource
from contraindication_engine.core.models import IntakeRecord

logger = logging.getLogger(__name__)


def _parse_age(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparseable age: {value!r}")
        return None


class PracticeDataAdapter(ReferenceDataSource, IntakeSource):
    """
    HTTP client for the practice system.

    Both the reference catalog and health intake live behind the same API:
    - GET {base}/reference/{table}         -> list of rows
    - GET {base}/individuals/{id}/intake   -> {"answers": {...}, "age": n}

    Transport and HTTP errors propagate; callers decide how to retry and
    degrade.
    """

    def __init__(
        self,
        base_url: str = PRACTICE_API_URL,
        api_key: str = PRACTICE_API_KEY,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.http_client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"} if api_key else {},
            transport=transport,
        )

        logger.info(f"Practice data adapter initialized for {self.base_url or '<unset>'}")

    async def fetch_table(self, table: str) -> List[Dict[str, Any]]:
        if table not in CATALOG_TABLES:
            raise KeyError(f"Unknown reference table: {table}")

        resp = await self.http_client.get(f"/reference/{table}")
        resp.raise_for_status()
        data = resp.json()

        # Accept a bare list or a {"rows": [...]} envelope
        rows = data.get("rows", []) if isinstance(data, dict) else data
        if not isinstance(rows, list):
            raise ValueError(f"Reference table {table} is not a list of rows")

        logger.debug(f"Fetched {len(rows)} rows from reference table {table}")
        return rows

    async def fetch(self, individual_id: str) -> IntakeRecord:
        resp = await self.http_client.get(f"/individuals/{individual_id}/intake")

        # No intake filled in yet
        if resp.status_code == 404:
            return IntakeRecord(individual_id=individual_id)

        resp.raise_for_status()
        data = resp.json() or {}

        answers = data.get("answers") or {}
        if not isinstance(answers, dict):
            answers = {"answers": answers}

        return IntakeRecord(
            individual_id=individual_id,
            answers=answers,
            age=_parse_age(data.get("age")),
        )

    async def close(self):
        await self.http_client.aclose()


# Singleton instance
_adapter: Optional[PracticeDataAdapter] = None


def get_practice_adapter(
    base_url: str = None,
    api_key: str = None
) -> PracticeDataAdapter:
    """Get or create practice data adapter singleton"""
    global _adapter
    if _adapter is None:
        _adapter = PracticeDataAdapter(
            base_url=base_url or PRACTICE_API_URL,
            api_key=api_key or PRACTICE_API_KEY,
        )
    return _adapter
