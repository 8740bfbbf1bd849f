"""
Migration Fabric

Resilient OData integration and a resumable migration pipeline.

Supports:
- OData v2/v4 transport with CSRF handshake, retries and a circuit breaker
- $batch building and multipart response parsing
- Data-dictionary discovery of fields, foreign keys and relationship graphs
- Per-object extract -> transform -> validate -> load with checkpoints
- Declarative field mappings with named converters
- Source/target reconciliation
"""

__version__ = "0.1.0"

from .client_factory import ClientFactory
from .config import ProjectConfig, load_config
from .connector import LiveConnector
from .errors import FabricError
from .orchestrator import MigrationOrchestrator

__all__ = [
    "__version__",
    "ClientFactory",
    "ProjectConfig",
    "load_config",
    "LiveConnector",
    "FabricError",
    "MigrationOrchestrator",
]
