"""
Platform API service package.

The service is the public entry point of the developer platform. Today it
only reports its own health and version; every route it gains later runs
through the shared error and observability middleware.

Structure:
- app.main: service class, ``/api/v1`` routes, and process entry point.
"""

__version__ = "1.0.0"
