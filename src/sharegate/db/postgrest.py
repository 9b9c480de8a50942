"""Async PostgREST client for the Supabase storage backend.

This is the single point of HTTP interaction with the database. Failures are
translated at this boundary: 409 becomes ``PostgrestConflict``, a value
the database cannot parse becomes ``TransferError(INVALID_REQUEST)``, and
every other error status or transport failure becomes a retryable
``TransferError(STORAGE_UNAVAILABLE)``.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Mapping

import httpx

from ..errors import ErrorKind, TransferError
from ..observability.logging import get_logger
from .errors import PostgrestConflict

logger = get_logger(__name__)

Filters = Mapping[str, 'tuple[str, Any] | Any']

# SQLSTATE data exceptions raised by caller-supplied values.
_CLIENT_ERROR_CODES = frozenset({'22P02', '22001', '22007'})

# Module-level shared client for connection pooling.
_shared_async_client: httpx.AsyncClient | None = None


def _get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


def is_uuid(value: str) -> bool:
    """True when ``value`` can be compared against a uuid primary key."""
    try:
        uuid.UUID(value)
    except (TypeError, ValueError):
        return False
    return True


def _split_schema_table(table: str, default_schema: str) -> tuple[str, str]:
    # "sharegate.transfers" selects a non-public schema via profile headers.
    if '.' in table:
        schema, name = table.split('.', 1)
        return schema.strip(), name.strip()
    return default_schema, table.strip()


def _encode_filter_value(op: str, value: Any) -> str:
    if op == 'is':
        if value is None:
            return 'null'
        if isinstance(value, bool):
            return 'true' if value else 'false'
        return str(value)

    if op == 'in':
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError('in operator requires an iterable of values')
        items = [json.dumps(v) if isinstance(v, str) else str(v) for v in value]
        return f"({','.join(items)})"

    if value is None:
        raise ValueError(f"{op} does not support None; use op='is' with value=None")
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def _filters_to_params(filters: Filters | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for col, spec in (filters or {}).items():
        if isinstance(spec, tuple) and len(spec) == 2:
            op, val = spec
        else:
            op, val = 'eq', spec
        params[str(col)] = f'{op}.{_encode_filter_value(str(op), val)}'
    return params


class PostgrestClient:
    """Minimal async PostgREST client authenticated with the service role."""

    def __init__(
        self,
        *,
        supabase_url: str,
        service_role_key: str,
        default_schema: str = 'public',
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        if not supabase_url:
            raise ValueError('supabase_url is required')
        if not service_role_key:
            raise ValueError('service_role_key is required')

        self._supabase_url = supabase_url.rstrip('/')
        self._service_role_key = service_role_key
        self._default_schema = default_schema or 'public'
        self._timeout_seconds = float(timeout_seconds)
        self._client = http_client or _get_shared_async_client()

    @property
    def base_rest_url(self) -> str:
        return f'{self._supabase_url}/rest/v1'

    def _auth_headers(self) -> dict[str, str]:
        # Never log these headers.
        return {
            'apikey': self._service_role_key,
            'Authorization': f'Bearer {self._service_role_key}',
        }

    def _schema_headers(self, schema: str, method: str) -> dict[str, str]:
        headers = {'Accept-Profile': schema}
        if method in ('POST', 'PATCH', 'DELETE'):
            headers['Content-Profile'] = schema
        return headers

    async def _request(
        self,
        method: str,
        operation: str,
        url: str,
        *,
        schema: str,
        params: Mapping[str, str] | None = None,
        json_body: Any = None,
        prefer: str | None = None,
    ) -> Any:
        headers = {**self._auth_headers(), **self._schema_headers(schema, method)}
        if prefer:
            headers['Prefer'] = prefer
        try:
            resp = await self._client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self._timeout_seconds,
            )
        except httpx.HTTPError as exc:
            logger.error(
                'storage_request_failed',
                operation=operation,
                error=type(exc).__name__,
            )
            raise TransferError(
                ErrorKind.STORAGE_UNAVAILABLE,
                operation,
                'storage backend unreachable',
                cause=exc,
            ) from exc

        self._raise_for_error(resp, operation)
        if not resp.content:
            return None
        return resp.json()

    def _raise_for_error(self, resp: httpx.Response, operation: str) -> None:
        if resp.status_code < 400:
            return

        message = resp.text
        code = details = None
        try:
            payload = resp.json()
            if isinstance(payload, dict):
                message = payload.get('message') or message
                code = payload.get('code')
                details = payload.get('details')
        except ValueError:
            pass

        if resp.status_code == 409:
            raise PostgrestConflict(message, code=code, details=details)

        if code in _CLIENT_ERROR_CODES:
            raise TransferError(ErrorKind.INVALID_REQUEST, operation, message)

        logger.error(
            'storage_error_status',
            operation=operation,
            status=resp.status_code,
            code=code,
        )
        raise TransferError(
            ErrorKind.STORAGE_UNAVAILABLE,
            operation,
            f'storage backend returned {resp.status_code}',
        )

    @staticmethod
    def _expect_list(payload: Any, operation: str) -> list[dict[str, Any]]:
        if not isinstance(payload, list):
            raise TransferError(
                ErrorKind.STORAGE_UNAVAILABLE,
                operation,
                'expected list response from storage backend',
            )
        return payload

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        columns: str = '*',
        limit: int | None = None,
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        schema, name = _split_schema_table(table, self._default_schema)
        params = _filters_to_params(filters)
        params['select'] = columns
        if limit is not None:
            params['limit'] = str(int(limit))
        if order:
            params['order'] = order
        payload = await self._request(
            'GET', f'select:{name}', f'{self.base_rest_url}/{name}',
            schema=schema, params=params,
        )
        return self._expect_list(payload, f'select:{name}')

    async def insert(
        self,
        table: str,
        data: Mapping[str, Any],
    ) -> list[dict[str, Any]]:
        schema, name = _split_schema_table(table, self._default_schema)
        payload = await self._request(
            'POST', f'insert:{name}', f'{self.base_rest_url}/{name}',
            schema=schema, json_body=dict(data), prefer='return=representation',
        )
        return self._expect_list(payload, f'insert:{name}')

    async def update(
        self,
        table: str,
        filters: Filters,
        data: Mapping[str, Any],
    ) -> list[dict[str, Any]]:
        schema, name = _split_schema_table(table, self._default_schema)
        payload = await self._request(
            'PATCH', f'update:{name}', f'{self.base_rest_url}/{name}',
            schema=schema,
            params=_filters_to_params(filters),
            json_body=dict(data),
            prefer='return=representation',
        )
        return self._expect_list(payload, f'update:{name}')

    async def rpc(
        self,
        function_name: str,
        params: Mapping[str, Any] | None = None,
        *,
        schema: str | None = None,
    ) -> Any:
        return await self._request(
            'POST', f'rpc:{function_name}',
            f'{self.base_rest_url}/rpc/{function_name}',
            schema=schema or self._default_schema,
            json_body=dict(params or {}),
        )
