# identity_sync/auth/__init__.py
"""
Authentication for the datastore API.

- clerk.py: Clerk session JWT verification against the instance JWKS
- identity.py: the verified caller attached to each authenticated request
"""
from identity_sync.auth.identity import SessionIdentity

__all__ = ["SessionIdentity"]
