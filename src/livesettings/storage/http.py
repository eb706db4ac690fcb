"""Storage engine that reads settings from a remote settings service over HTTP.

Intended for services that consume settings administered by a central
application. The remote service owns history, so ``create_history`` and
``redact_history`` are no-ops here.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from livesettings.core import coerce
from livesettings.core.exceptions import InvalidStoreDataError, SettingValidationError, StoreUnavailableError
from livesettings.core.history import HistoryItem
from livesettings.core.setting import Setting
from livesettings.storage.base import StorageAdapter

DEFAULT_HEADERS = {"Accept": "application/json"}
DEFAULT_TIMEOUT = 5.0


class HttpStorage(StorageAdapter):
    """Settings served by a remote REST endpoint.

    Endpoints (relative to ``base_url``):

    * ``GET /settings`` -> ``{"settings": [...]}``
    * ``GET /settings/updated_since?time=<iso8601>`` -> ``{"settings": [...]}``
    * ``GET /settings/last_updated_at`` -> ``{"last_updated_at": <iso8601|null>}``
    * ``GET /setting?key=<key>`` -> setting object, 404 when missing
    * ``POST /settings`` with ``{"settings": [...]}`` -> ``{"success": bool, "errors": {...}}``
    * ``GET /setting/history?key=<key>&limit=&offset=`` -> ``{"histories": [...]}``

    Every request uses a bounded timeout so a hung service aborts the refresh
    cycle instead of blocking readers.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        namespace: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Optional[Dict[str, str]] = None,
        query_params: Optional[Dict[str, str]] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__(namespace)
        if client is None:
            if not base_url:
                raise ValueError("HttpStorage requires a base_url or a client")
            client = httpx.Client(
                base_url=base_url.rstrip("/"),
                timeout=timeout,
                headers={**DEFAULT_HEADERS, **(headers or {})},
                follow_redirects=True,
            )
        self.client = client
        self.query_params = dict(query_params or {})

    def close(self) -> None:
        self.client.close()

    def _params(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        merged = dict(self.query_params)
        if self.namespace:
            merged["namespace"] = self.namespace
        merged.update(params or {})
        return merged

    def _call(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, body: Any = None) -> Optional[Any]:
        """Issue a request and decode the JSON response.

        Returns:
            Decoded JSON, or None for 404/410 responses.

        Raises:
            StoreUnavailableError: Transport errors, timeouts or 5xx responses.
            InvalidStoreDataError: Bodies that are not valid JSON.
            SettingValidationError: 422 responses.
        """
        try:
            response = self.client.request(method, path, params=self._params(params), json=body)
        except httpx.TimeoutException as e:
            raise StoreUnavailableError(f"Timed out calling {path}: {e}") from e
        except httpx.TransportError as e:
            raise StoreUnavailableError(f"Error calling {path}: {e}") from e

        if response.status_code in (404, 410):
            return None
        if response.status_code == 422:
            raise SettingValidationError(self._errors(response))
        if response.is_error:
            raise StoreUnavailableError(f"{method} {path} failed: {response.status_code} {response.reason_phrase}")
        try:
            return response.json()
        except ValueError as e:
            raise InvalidStoreDataError(f"Invalid JSON from {path}: {e}") from e

    @staticmethod
    def _errors(response: httpx.Response) -> Dict[str, List[str]]:
        try:
            errors = response.json().get("errors") or {}
        except ValueError:
            errors = {}
        if not errors:
            return {"base": [f"rejected with status {response.status_code}"]}
        return {str(field): messages if isinstance(messages, list) else [str(messages)] for field, messages in errors.items()}

    def _settings(self, payload: Optional[Dict[str, Any]]) -> List[Setting]:
        if not payload:
            return []
        if not isinstance(payload, dict) or not isinstance(payload.get("settings", []), list):
            raise InvalidStoreDataError("Settings response must be an object with a settings array")
        return [Setting.from_dict(attributes, namespace=self.namespace) for attributes in payload.get("settings", [])]

    def all(self) -> List[Setting]:
        return self._settings(self._call("GET", "/settings"))

    def updated_since(self, timestamp: datetime) -> List[Setting]:
        return self._settings(
            self._call("GET", "/settings/updated_since", {"time": coerce.iso8601(timestamp)})
        )

    def last_updated_at(self) -> Optional[datetime]:
        payload = self._call("GET", "/settings/last_updated_at") or {}
        return coerce.time(payload.get("last_updated_at"))

    def find_by_key(self, key: str) -> Optional[Setting]:
        payload = self._call("GET", "/setting", {"key": key})
        if not payload:
            return None
        setting = Setting.from_dict(payload, namespace=self.namespace)
        return None if setting.deleted else setting

    def _write(self, setting: Setting, previous_key: Optional[str]) -> None:
        if setting.deleted:
            payload: Dict[str, Any] = {"key": setting.key, "deleted": True}
        else:
            data = setting.to_dict()
            payload = {
                "key": setting.key,
                "value": data["value"],
                "value_type": data["value_type"],
                "description": data["description"],
            }
        result = self._call("POST", "/settings", body={"settings": [payload]}) or {}
        if result.get("success") is False:
            errors = result.get("errors") or {}
            raise SettingValidationError(
                {str(field): list(messages) for field, messages in errors.items()}
                or {"base": ["rejected by settings service"]}
            )
        logger.debug(f"Saved setting {setting.key!r} to {self.client.base_url}")

    def create_history(
        self,
        key: str,
        value: Optional[str] = None,
        changed_by: Optional[str] = None,
        deleted: bool = False,
        created_at: Optional[datetime] = None,
    ) -> None:
        # The remote service records its own history
        return None

    def history(self, key: str, limit: Optional[int] = None, offset: int = 0) -> List[HistoryItem]:
        params: Dict[str, Any] = {"key": key}
        if offset > 0:
            params["offset"] = offset
        if limit is not None:
            params["limit"] = limit
        payload = self._call("GET", "/setting/history", params) or {}
        return [
            HistoryItem(
                key=key,
                value=attributes.get("value"),
                changed_by=attributes.get("changed_by"),
                deleted=bool(attributes.get("deleted", False)),
                created_at=attributes.get("created_at"),
            )
            for attributes in payload.get("histories", [])
        ]

    def redact_history(self, key: str) -> None:
        return None
