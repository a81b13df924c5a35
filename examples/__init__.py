"""Example suites driven by the harness."""
