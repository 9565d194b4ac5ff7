"""
API routers for availability, booking and appointment management
"""

__all__ = []
