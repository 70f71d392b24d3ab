"""
Database module for the civil registry.
"""

from etatcivil.db.orm import (
    ActVariant,
    Base,
    CivilAct,
    Commune,
    MaritalStatus,
    Person,
    Province,
    Sex,
    TerritorialEntity,
    VitalStatus,
)

__all__ = [
    "Base",
    "ActVariant",
    "CivilAct",
    "Commune",
    "MaritalStatus",
    "Person",
    "Province",
    "Sex",
    "TerritorialEntity",
    "VitalStatus",
]
