"""Core Business Logic Module

Use cases for the staff directory, independent of the HTTP layer.

Module Structure:
    - identity/          : Identity Provider Gateway (Keycloak)
    - rbac.py            : Tier hierarchy and authorization decisions
    - directory.py       : Employee/Admin lookups and persistence
    - sessions.py        : Login, token refresh and logout
    - passwords.py       : Password lifecycle flows
    - provisioning.py    : User registration with rollback
    - user_management.py : Listing, archiving and soft deletion
    - structure.py       : Organizations, branches, areas, job roles
    - assets.py          : Employee QR codes and uploads
    - validators.py      : Input validation
    - errors.py          : Error taxonomy

Usage Pattern:
    Every use case takes the acting admin (or the authenticated Principal)
    as an explicit argument and raises a ``ServiceError`` subclass on
    failure.
"""
