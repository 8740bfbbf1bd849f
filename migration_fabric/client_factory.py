"""Named-system registry producing cached OData clients."""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from .config import SystemConfig
from .errors import ConfigurationError
from .odata import ODataClient, create_auth_provider

logger = logging.getLogger(__name__)

OBJECT_MAP_PATH = Path(__file__).parent / "data" / "object_map.json"
DEFAULT_SERVICE_ROOT = "/sap/opu/odata/sap"


def load_object_map(path: Union[str, Path] = OBJECT_MAP_PATH) -> Dict[str, Any]:
    """Load the bundled service and object tables."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class ClientFactory:
    """
    Registry of named systems (``source``, ``target``, ...).

    Clients are cached per ``system:service`` so the CSRF token, cookies and
    circuit breaker of a service are shared by everything that talks to it.
    """

    def __init__(
        self,
        systems: Optional[Dict[str, Union[SystemConfig, Dict[str, Any]]]] = None,
        services: Optional[Dict[str, str]] = None,
        client_options: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the factory.

        Args:
            systems: Named system configurations
            services: Service name -> service path table (bundled table by default)
            client_options: Extra keyword arguments for every ODataClient (session, sleep, ...)
        """
        self.systems: Dict[str, SystemConfig] = {}
        self.services = dict(services) if services is not None else load_object_map()["services"]
        self.client_options = client_options or {}
        self._clients: Dict[str, ODataClient] = {}
        self._lock = threading.Lock()

        for name, config in (systems or {}).items():
            self.register_system(name, config)

    def register_system(self, name: str, config: Union[SystemConfig, Dict[str, Any]]) -> SystemConfig:
        if not isinstance(config, SystemConfig):
            try:
                config = SystemConfig.model_validate(config)
            except ValidationError as e:
                raise ConfigurationError(
                    f"Invalid configuration for system '{name}': {e.errors()[0]['msg']}",
                    {"field": f"systems.{name}"},
                ) from e
        self.systems[name] = config
        logger.info(f"Registered system: {name} ({config.base_url})")
        return config

    def get_client(self, system: str, service: str, dialect: Optional[str] = None) -> ODataClient:
        """
        Get the cached client for a service on a registered system.

        Args:
            system: Registered system name
            service: Service name from the service table, or a literal service path
            dialect: Overrides the system's dialect for this service

        Raises:
            ConfigurationError: If the system is not registered
        """
        cache_key = f"{system}:{service}"
        with self._lock:
            if cache_key in self._clients:
                return self._clients[cache_key]

            if system not in self.systems:
                raise ConfigurationError(
                    f"Unknown system: {system}. Register it with register_system() first.",
                    {"field": "system", "system": system},
                )

            service_path = self.get_service_path(service)
            if service_path is None:
                service_path = service if service.startswith("/") else f"{DEFAULT_SERVICE_ROOT}/{service}"
                logger.warning(f"Service {service} is not in the service table, using {service_path}")

            client = self.create_client(self.systems[system], service_path=service_path, dialect=dialect)
            self._clients[cache_key] = client
            logger.debug(f"Created client {cache_key} -> {service_path}")
            return client

    def create_client(
        self,
        system_config: Union[SystemConfig, Dict[str, Any]],
        service_path: Optional[str] = None,
        dialect: Optional[str] = None,
    ) -> ODataClient:
        """Create an uncached client for a system configuration."""
        if not isinstance(system_config, SystemConfig):
            system_config = SystemConfig.model_validate(system_config)

        auth = system_config.auth.to_provider_config() if system_config.auth else None
        return ODataClient(
            base_url=system_config.base_url,
            auth_provider=create_auth_provider(auth),
            dialect=dialect or system_config.dialect,
            timeout=system_config.timeout,
            retries=system_config.retries,
            circuit_breaker_threshold=system_config.circuit_breaker_threshold,
            circuit_breaker_reset_ms=system_config.circuit_breaker_reset_ms,
            csrf_timeout=system_config.csrf_timeout,
            service_path=service_path,
            **self.client_options,
        )

    def get_service_path(self, service: str) -> Optional[str]:
        return self.services.get(service)

    def get_service_names(self) -> List[str]:
        return list(self.services.keys())

    def clear_cache(self) -> None:
        with self._lock:
            self._clients.clear()
