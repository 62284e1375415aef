"""
Fleet Builder Resource API client

Minimal `requests`-based ResourceApiProtocol: the three read-only queries the
build needs against the pine (OData-style) resource API.
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from typing_extensions import override

from .. import constants
from ..config import Settings
from ..datacls import FleetTarget
from ..exceptions import DeviceTypeNotFoundError, FleetNotFoundError, RemoteApiError
from ..protocols import ResourceApiProtocol

logger = logging.getLogger(__name__)

USER_AGENT = "fleetb"


def quote(value: str) -> str:
    """OData string literal."""
    return "'" + value.replace("'", "''") + "'"


class HttpResourceApi(ResourceApiProtocol):

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or Settings()
        self.base_url = self.settings.api_url
        self.timeout = self.settings.request_timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json", "User-Agent": USER_AGENT})
        if self.settings.api_token:
            self.session.headers["Authorization"] = f"Bearer {self.settings.api_token}"
        self._authenticated: Optional[bool] = None

    def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        logger.debug(f"GET {url} {params or ''}")
        try:
            return self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteApiError(f"Request to '{url}' failed: {e}") from e

    def _resource(self, resource: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        response = self._get(f"/{constants.API_VERSION}/{resource}", params)
        if response.status_code != 200:
            raise RemoteApiError(
                f"Resource API returned HTTP {response.status_code} for '{resource}': {response.text[:200]}"
            )
        try:
            return response.json()["d"]
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteApiError(f"Malformed response for '{resource}': {e}") from e

    @staticmethod
    def _arch_of(device_type: Dict[str, Any]) -> str:
        archs = device_type.get("is_of__cpu_architecture") or []
        if not archs or not archs[0].get("slug"):
            raise RemoteApiError(f"Device type '{device_type.get('slug')}' has no CPU architecture.")
        return archs[0]["slug"]

    @override
    def resolve_device_type_architecture(self, device_type: str) -> str:
        rows = self._resource(
            f"device_type(slug={quote(device_type)})",
            {
                "$select": "slug",
                "$expand": "is_of__cpu_architecture($select=slug)",
            },
        )
        if not rows:
            raise DeviceTypeNotFoundError(f"Invalid device type: {device_type}")
        return self._arch_of(rows[0])

    @override
    def resolve_fleet_default_device_type(self, fleet: str) -> FleetTarget:
        # 'org/name' is a fleet slug, a bare name matches the fleet name
        field = "slug" if "/" in fleet else "app_name"
        rows = self._resource(
            "application",
            {
                "$filter": f"{field} eq {quote(fleet.lower() if field == 'slug' else fleet)}",
                "$select": "id,slug",
                "$expand": (
                    "is_for__device_type($select=slug;$expand=is_of__cpu_architecture($select=slug)),"
                    "application_type($select=supports_multicontainer)"
                ),
            },
        )
        if not rows:
            raise FleetNotFoundError(f"Fleet not found: {fleet}")
        if len(rows) > 1:
            raise RemoteApiError(f"Fleet name '{fleet}' is ambiguous, use the 'org/name' slug instead.")

        app = rows[0]
        device_types = app.get("is_for__device_type") or []
        if not device_types:
            raise RemoteApiError(f"Fleet '{fleet}' has no default device type.")
        app_types = app.get("application_type") or []
        return FleetTarget(
            device_type=device_types[0]["slug"],
            architecture=self._arch_of(device_types[0]),
            supports_multicontainer=app_types[0].get("supports_multicontainer") if app_types else None,
        )

    @override
    def is_authenticated(self) -> bool:
        if self._authenticated is None:
            if not self.settings.api_token:
                self._authenticated = False
            else:
                response = self._get("/user/v1/whoami")
                self._authenticated = response.status_code == 200
                logger.debug(f"Session is {'' if self._authenticated else 'not '}authenticated")
        return self._authenticated
