"""Types shared by every layer."""
