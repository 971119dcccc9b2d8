"""API router subpackage for the content backend.

Submodules:
    - resources: List and get-by-id endpoints for every content collection.

Routers are mounted under ``Settings.api_base`` by the application factory.
"""
