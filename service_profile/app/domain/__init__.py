"""
Domain logic for the Profile Service.

- scopes: which granted scopes permit profile disclosure
- models: credentials, batch request and the response schema
- profile: composition of the response profile and its cache validators

Kept free of transport concerns; adapters and routes build on it.
"""
