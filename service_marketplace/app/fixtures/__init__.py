"""
Demo data set for the Marketplace Service.

Run ``python -m service_marketplace.app.fixtures`` to seed the configured
storage backend.
"""
