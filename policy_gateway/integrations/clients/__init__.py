"""
Integration clients: mocks for development, real HTTP clients for production.
"""
