"""
API route modules.
"""

from etatcivil.api.routes.acts import birth_acts_router, death_acts_router
from etatcivil.api.routes.persons import router as persons_router

__all__ = [
    "birth_acts_router",
    "death_acts_router",
    "persons_router",
]
