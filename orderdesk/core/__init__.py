"""
Core package for shared utilities.

Configuration, structured logging, and token handling shared by the
database layer, services, and API.
"""
