"""Authenticated API client and container runtime handle for one run."""
