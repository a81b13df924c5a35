"""
End-to-end tests: the bundled example suite run through the harness in a
real Playwright browser against the demo application.
"""
