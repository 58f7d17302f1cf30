from .fhir_client import FHIRClient
from .pagination import BundlePaginator, iter_resources
from .references import ReferenceCache, ReferenceResolver

__all__ = ["FHIRClient", "BundlePaginator", "iter_resources", "ReferenceCache", "ReferenceResolver"]
