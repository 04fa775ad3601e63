"""
HTTP helpers for the Marketplace API routes.

Query parameter filtering, HAL representations with pagination links and
response builders carrying HTTP cache headers.
"""
