"""
Test suite for the E2E harness.

This package contains:
- unit/: Fast tests for each harness component
- integration/: Runner, CLI and HTTP client tests with fake browsers
- e2e/: The example suite driven through a real Playwright browser
- support/: The demo application used as the system under test
"""
