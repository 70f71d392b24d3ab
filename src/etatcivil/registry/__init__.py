"""
Civil-act consistency and batch registration engine.

Birth and death acts share one coordinator; the batch processor and the
dry-run validator build on the same rules.
"""

from etatcivil.registry.batch import BatchProcessor, check_batch_structure
from etatcivil.registry.coordinator import ActCoordinator
from etatcivil.registry.dry_run import BatchValidator
from etatcivil.registry.lifecycle import PersonLifecycleManager
from etatcivil.registry.persons import PersonService
from etatcivil.registry.query import (
    ActSearchCriteria,
    PageRequest,
    PersonSearchCriteria,
    QueryComposer,
    SortDirection,
)

__all__ = [
    "ActCoordinator",
    "ActSearchCriteria",
    "BatchProcessor",
    "BatchValidator",
    "check_batch_structure",
    "PageRequest",
    "PersonLifecycleManager",
    "PersonSearchCriteria",
    "PersonService",
    "QueryComposer",
    "SortDirection",
]
