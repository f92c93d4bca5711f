"""
MODULE OVERVIEW:
The HTTP side of a subscription: exchanging filter options for a filter key.

WHAT IS HAPPENING HERE:
The server keeps the filter predicate; the client only ever holds the opaque key it gets
back from `POST /api/filters/create`. `FilterSession` is the glue between the filter form
and the ConnectionManager: it only asks for a new key when the options actually changed,
and an all-empty form means "unsubscribe".
"""
from typing import Optional

import httpx
from loguru import logger
from pydantic import ValidationError

from filter_stream.client.connection_manager import ConnectionManager
from filter_stream.shared.config import Settings
from filter_stream.shared.models import FilterCreated, FilterOptions


class FilterCreationError(Exception):
    pass


class FilterClient:
    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.base_url = settings.http_base
        self.client = client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_S)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def create_filter(self, options: FilterOptions) -> str:
        payload = {"options": options.to_request()}
        logger.info(f"event=create_filter options={payload['options']}")
        try:
            resp = await self.client.post(f"{self.base_url}/api/filters/create", json=payload)
            resp.raise_for_status()
            created = FilterCreated.model_validate(resp.json())
        except httpx.HTTPStatusError as e:
            raise FilterCreationError(
                f"HTTP error! status: {e.response.status_code}, body: {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise FilterCreationError(f"Request to {self.base_url} failed: {e}") from e
        except (ValueError, ValidationError) as e:
            raise FilterCreationError(f"Unexpected filter response: {e}") from e

        logger.info(f"event=filter_created filter_key={created.filter_key}")
        return created.filter_key

    async def backend_status(self) -> dict:
        resp = await self.client.get(f"{self.base_url}/api/status")
        resp.raise_for_status()
        return resp.json()


class FilterSession:
    def __init__(self, manager: ConnectionManager, filter_client: FilterClient):
        self.manager = manager
        self.filter_client = filter_client
        self.current = FilterOptions()

    async def apply(self, options: FilterOptions) -> str:
        """Subscribe to `options`. Returns the filter key now in use ("" when unsubscribed)."""
        if options.to_request() == self.current.to_request() and self.manager.filter_key:
            logger.debug("event=apply_filter reason=unchanged")
            return self.manager.filter_key

        if options.is_empty:
            self.current = options
            self.manager.activate("")
            return ""

        filter_key = await self.filter_client.create_filter(options)
        self.current = options
        self.manager.activate(filter_key)
        return filter_key

    def clear(self) -> None:
        self.current = FilterOptions()
        self.manager.activate("")
        self.manager.clear_events()
