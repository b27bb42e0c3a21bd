"""Monitoring: logging setup and live orchestrator statistics."""
