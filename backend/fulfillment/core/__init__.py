"""
Core package: settings, logging, errors and security shared across the service.
"""
