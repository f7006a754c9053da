"""Preload engine contract, docker adapter and session lifecycle."""
