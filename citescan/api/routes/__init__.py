"""
API route modules.
"""

from citescan.api.routes import health, internal, jobs, scans

__all__ = ["health", "internal", "jobs", "scans"]
