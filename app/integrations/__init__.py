"""app.integrations — hosted backend gateway modules.

All outbound HTTP calls to the hosted backend must go through a gateway in
this package, never via bare `requests` calls in services or blueprints.
Every gateway:
  - injects the public API key (and the session's bearer token)
  - takes an injectable `requests.Session` for tests
  - raises its own error type carrying the backend's message, no retries

Current gateways:
  identity_gateway.IdentityGateway — sign-in, refresh, user lookup, sign-out
  storage_gateway.StorageGateway   — supporting document uploads
"""
