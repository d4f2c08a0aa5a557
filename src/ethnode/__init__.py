"""Lifecycle manager and health monitor for Docker-run blockchain clients."""
