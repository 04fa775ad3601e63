"""
Phones marketplace API service package.

Partners (phone sellers) authenticate with JWT and browse the phone
catalog, their offers and their clients through a HAL+JSON REST API:

- Authentication: login check and refresh tokens
- Authorization: administrator role and per-resource voters
- Caching: tag-aware result cache, per-partner HTTP cache metadata and
  a reverse proxy cache kernel, invalidated on entity changes

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.domain: Entities, domain events and request/response schemas.
- app.persistence: In-memory and PostgreSQL storage backends.
- app.repositories: Entity queries, paginated windows and write events.
- app.cache: Tagged cache, HTTP cache metadata, invalidation, proxy kernel.
- app.api: Query filters, HAL representations and response headers.
- app.security: Passwords, tokens, authenticator and voters.
- app.fixtures: Reproducible demo data set.
"""
