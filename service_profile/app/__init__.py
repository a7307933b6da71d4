"""
Profile Service package for the Profile Access Layer.

The service answers ``GET /v1/profile`` for an OAuth-authenticated caller:
- Authentication: bearer token verified by the OAuth server
- Authorization: granted scopes must permit profile disclosure
- Aggregation: one batched, cached, per-user fan-out to the identity
  services (email, uid, avatar, display name)
- Cache validation: content-hash ETag and cache-aware Last-Modified,
  honoring conditional requests

Structure:
- app.main: FastAPI app, routes, and wiring.
- app.adapters: HTTP clients for the OAuth server and identity services.
- app.auth: bearer-token authentication.
- app.batching: aggregation engine, cache stores, fan-out generator.
- app.domain: scopes, models, profile composition.
- app.routes: the profile request handler.
"""
