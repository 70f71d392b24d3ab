"""
API module for the civil registry.

Provides REST API routes for:
- Birth and death acts (single, batch, dry-run validation, search)
- Persons (registration, search, status changes)
"""
