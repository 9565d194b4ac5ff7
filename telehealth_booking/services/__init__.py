"""Booking services, stores and provider credentials."""
