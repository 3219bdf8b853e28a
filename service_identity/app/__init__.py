"""
Identity Service package for the Access Identity layer.

This package verifies identity tokens minted by the backend's auth plugin.
It is intentionally small and focused:

- app.identity: Token verification client (header parsing, signing key
  cache, key fetching, signature and claim checks).
- app.discovery: Resolves plugin base URLs on the backend host.
- app.middleware: FastAPI dependency that turns a verified token into a
  request identity, or a 401.
- app.main: Application entrypoint that wires routes and lifecycle.

Design notes:
- Keep the package import side-effects minimal; module import must not
  perform network calls. All IO happens in route handlers or explicit
  startup hooks.
- Use the shared/ utilities for configuration, logging and errors.
"""
