"""
Chapel Admin Services - administrative backend for the chapel platform.

This package provides the admin-side audit trail:
- Immutable audit records with risk classification and retention tagging
- Alerting hooks for high-risk and security-relevant actions
- Reporting, compliance scoring, export and retention cleanup
"""

__version__ = "1.0.0"
__author__ = "Chapel Platform Team"


def get_version() -> str:
    """Get admin services version."""
    return __version__


__all__ = ["__version__", "get_version"]
