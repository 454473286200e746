"""
Test Suite for Package Lifecycle

This package contains tests for:
- polling - operation poller and transition tables
- events - lifecycle event emitter
- package_version - service facade and version entity
- connection - tooling API client (httpx mock transport)
- identifiers, errors, project, config
"""
