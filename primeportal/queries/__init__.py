"""Read-only data access shaped for the API routes.

Functions take a ``DatabaseClient`` (authorization is the route's job) and
return ``Ok`` / ``Err``; storage failures are never turned into empty results.
"""
