"""Shared infrastructure: configuration, timezones, HTTP clients and logging."""
