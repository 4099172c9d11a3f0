from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.services.errors import ConfigurationError, TransportError
from app.settings import get_settings

logger = logging.getLogger(__name__)

APIFY_ACTOR_RUN_PATH = "/acts/{actor_id}/runs"
APIFY_RUN_STATUS_PATH = "/actor-runs/{run_id}"
APIFY_DATASET_PATH = "/datasets/{dataset_id}"

RUN_SUCCEEDED = "SUCCEEDED"
RUN_FAILED_STATUSES = frozenset({"FAILED", "TIMED-OUT", "ABORTED"})
RUN_TERMINAL_STATUSES = RUN_FAILED_STATUSES | {RUN_SUCCEEDED}


def _normalize_actor_id(actor_id: str) -> str:
    """Apify requires username~actor-name."""
    if "~" in actor_id:
        return actor_id
    if "/" in actor_id:
        return actor_id.replace("/", "~", 1)
    return actor_id


@dataclass(frozen=True)
class RunStatus:
    run_id: str
    status: str
    dataset_id: str | None = None
    item_count: int | None = None
    message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in RUN_TERMINAL_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == RUN_SUCCEEDED


class ApifyClient:
    """Start/status contract of the Apify actor API.

    Only starts runs and reads their status; dataset items are never
    downloaded here, just counted.
    """

    def __init__(
        self,
        token: str | None,
        *,
        base_url: str = "https://api.apify.com/v2",
        timeout_s: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_s, transport=self._transport)

    def _params(self) -> dict[str, str]:
        if not self.token:
            raise ConfigurationError("APIFY_TOKEN missing")
        return {"token": self.token}

    async def start_run(self, actor_id: str, payload: dict[str, Any]) -> str:
        """Start an actor run without waiting for it. Returns the run id."""
        normalized_id = _normalize_actor_id(actor_id)
        params = self._params()
        try:
            async with self._client() as client:
                resp = await client.post(
                    APIFY_ACTOR_RUN_PATH.format(actor_id=normalized_id), params=params, json=payload
                )
        except httpx.HTTPError as exc:
            raise TransportError(f"Apify run start failed: {exc}", actor=normalized_id) from exc

        if resp.status_code >= 400:
            raise TransportError(
                f"Apify API error: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
                body=resp.text[:400],
                actor=normalized_id,
            )

        try:
            run_data = resp.json().get("data") or {}
        except ValueError as exc:
            raise TransportError("Apify run start returned invalid JSON", body=resp.text[:400], actor=normalized_id) from exc

        run_id = run_data.get("id")
        if not run_id:
            raise TransportError("Apify run id missing", body=resp.text[:400], actor=normalized_id)

        logger.info("[apify] Started run %s for actor %s", run_id, normalized_id)
        return run_id

    async def get_run_status(self, run_id: str) -> RunStatus:
        """Read the status of a run; for succeeded runs also count the dataset items."""
        params = self._params()
        async with self._client() as client:
            try:
                status_resp = await client.get(APIFY_RUN_STATUS_PATH.format(run_id=run_id), params=params)
            except httpx.HTTPError as exc:
                raise TransportError(f"Apify run status failed: {exc}", run_id=run_id) from exc
            if status_resp.status_code >= 400:
                raise TransportError(
                    f"Apify run status failed: {status_resp.status_code}",
                    status_code=status_resp.status_code,
                    body=status_resp.text[:400],
                    run_id=run_id,
                )
            try:
                data = status_resp.json().get("data") or {}
            except ValueError as exc:
                raise TransportError("Apify run status returned invalid JSON", run_id=run_id) from exc

            status_value = data.get("status")
            if not status_value:
                raise TransportError("Apify run status missing", body=status_resp.text[:400], run_id=run_id)

            dataset_id = data.get("defaultDatasetId")
            item_count = None
            if status_value == RUN_SUCCEEDED and dataset_id:
                item_count = await self._dataset_item_count(client, dataset_id, params)

        return RunStatus(
            run_id=run_id,
            status=status_value,
            dataset_id=dataset_id,
            item_count=item_count,
            message=data.get("statusMessage") or data.get("errorMessage"),
        )

    async def _dataset_item_count(
        self, client: httpx.AsyncClient, dataset_id: str, params: dict[str, str]
    ) -> int | None:
        try:
            resp = await client.get(APIFY_DATASET_PATH.format(dataset_id=dataset_id), params=params)
        except httpx.HTTPError as exc:
            logger.warning("[apify] Dataset %s info failed: %s", dataset_id, exc)
            return None
        if resp.status_code >= 400:
            logger.warning("[apify] Dataset %s info returned %s", dataset_id, resp.status_code)
            return None
        try:
            count = (resp.json().get("data") or {}).get("itemCount")
        except ValueError:
            return None
        return int(count) if count is not None else None


def get_apify_client() -> ApifyClient:
    settings = get_settings()
    return ApifyClient(
        settings.apify_token,
        base_url=settings.apify_base_url,
        timeout_s=settings.apify_timeout_sec,
    )
