"""
Integration tests for the harness.

These run the full runner, CLI and HTTP client with fake browser backends
and, where real traffic is needed, the demo Flask app on a local port.
"""
