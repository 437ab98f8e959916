"""HTTP management API."""
