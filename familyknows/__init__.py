"""
FamilyKnows backup service.

This package provides the Google Drive backup/restore flow for a family
vault workspace, with data-service and drive abstractions so the same
orchestrator runs against in-memory doubles, a SQL database, or the real
Google APIs.
"""
