"""Cron entry points: scan, verify, sweep and exit refresh."""
