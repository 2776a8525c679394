"""
Test Suite for Commeta

This package contains tests for the engine components:
- stores (credentials, registry, sessions, repo cache)
- process supervision and the git / janito / vercel wrappers
- the command router and both channels
"""
