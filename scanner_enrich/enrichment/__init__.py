from .base import Enricher, EnrichmentContext
from .geo import GeoEnricher, GeoResult
from .rdap import REGISTRY_ENDPOINTS, RdapEnricher

__all__ = [
    "Enricher",
    "EnrichmentContext",
    "GeoEnricher",
    "GeoResult",
    "RdapEnricher",
    "REGISTRY_ENDPOINTS",
]
