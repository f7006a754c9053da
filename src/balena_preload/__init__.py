"""Preload a balena application release into a device disk image."""

__version__ = "0.1.0"

ISSUES_URL = "https://github.com/balena-io/balena-preload/issues"
