"""Project configuration schemas and loader."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class _ConfigModel(BaseModel):
    """Accepts both snake_case field names and their camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AuthConfig(_ConfigModel):
    type: str = "basic"
    username: Optional[str] = None
    password: Optional[str] = None
    token_url: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    scope: Optional[str] = None
    assertion: Optional[str] = None
    cert_path: Optional[str] = None
    key_path: Optional[str] = None
    ca_path: Optional[str] = None

    def to_provider_config(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SystemConfig(_ConfigModel):
    base_url: str
    auth: Optional[AuthConfig] = None
    dialect: str = "v2"
    timeout: float = 30.0
    retries: int = 3
    circuit_breaker_threshold: int = 5
    circuit_breaker_reset_ms: int = 60000
    csrf_timeout: float = 10.0


class ToleranceConfig(_ConfigModel):
    amount: float = 0.01
    count: int = 0
    percentage: float = 0.001
    overrides: Dict[str, Dict[str, float]] = Field(default_factory=dict)


class DictionaryConfig(_ConfigModel):
    """Function gateway used for dictionary reads; omitted means fixtures."""
    base_url: Optional[str] = None
    auth: Optional[AuthConfig] = None
    pool_size: int = 5
    acquire_timeout: float = 10.0
    language: str = "E"


class ProjectConfig(_ConfigModel):
    name: str = "migration"
    systems: Dict[str, SystemConfig] = Field(default_factory=dict)
    dictionary: Optional[DictionaryConfig] = None

    objects: List[str] = Field(default_factory=list)
    modules: List[str] = Field(default_factory=list)
    module_objects: Dict[str, List[str]] = Field(default_factory=dict)
    dependencies: Dict[str, List[str]] = Field(default_factory=dict)

    batch_size: int = Field(default=500, ge=1)
    max_records: Optional[int] = Field(default=None, ge=1)
    dry_run: bool = False
    fail_fast: Union[bool, List[str]] = False
    max_errors: int = 50
    cutoff_date: Optional[str] = None
    cutoff_field: str = "CreationDate"
    cutoff_fields: Dict[str, str] = Field(default_factory=dict)

    mappings: Dict[str, List[Any]] = Field(default_factory=dict)
    pass_through: bool = False
    validation_rules: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    quality_checks: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    reconcile: bool = False
    reconciliation: Dict[str, Dict[str, List[str]]] = Field(default_factory=dict)
    tolerances: ToleranceConfig = Field(default_factory=ToleranceConfig)

    checkpoint_dir: str = "./checkpoints"
    report_dir: Optional[str] = None

    def get_system(self, name: str) -> SystemConfig:
        if name not in self.systems:
            raise ConfigurationError(f"System '{name}' is not configured", {"field": f"systems.{name}"})
        return self.systems[name]


def parse_config(data: Dict[str, Any]) -> ProjectConfig:
    """
    Validate a configuration dict.

    Raises:
        ConfigurationError: If the data does not match the schema
    """
    try:
        return ProjectConfig.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field_path = ".".join(str(p) for p in first.get("loc", ()))
        raise ConfigurationError(
            f"Invalid configuration: {field_path or 'root'}: {first.get('msg', str(e))}",
            {"field": field_path, "errorCount": e.error_count()},
        ) from e


def load_config(path: Union[str, Path]) -> ProjectConfig:
    """
    Load and validate a JSON project configuration file.

    Args:
        path: Path to the configuration file

    Returns:
        Validated ProjectConfig
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}", {"field": "config"})

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Configuration file is not valid JSON: {e}", {"field": "config"}) from e

    config = parse_config(data)
    logger.info(f"Loaded configuration '{config.name}' with {len(config.systems)} systems from {path}")
    return config
