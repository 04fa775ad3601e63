"""
Marketplace caching package.

Provides the tag-aware result cache with early recomputation, the HTTP
cache metadata resolver, the invalidation subscriber reacting to entity
events and the reverse proxy cache kernel mounted in front of the API.
"""
