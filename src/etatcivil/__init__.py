"""
Etat civil - civil registry administrative backend

Keeps birth and death certificates consistent with the persons they
refer to:
- Registers single acts with uniqueness and date coherence checks
- Drives the person vital-status lifecycle from act creation/removal
- Ingests acts in bulk with per-item isolation and dry-run validation
- Serves multi-criteria searches over acts and persons
"""

__version__ = "0.1.0"
