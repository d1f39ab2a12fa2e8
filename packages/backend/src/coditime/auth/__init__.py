"""Authentication and session management.

Learn: Two credential mechanisms feed one principal type:
1. Browser → login → opaque session id (cookie) → session store
2. Editor plugins / CLI → API token in Authorization header → api_keys table

Both resolve to a SessionPrincipal or TokenPrincipal that always carries
the authenticated user.
"""
