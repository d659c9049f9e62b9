"""Refresh-token rotation, revocation, and device-session bookkeeping."""
