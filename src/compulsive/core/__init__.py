"""Trader core: contracts, readiness join, stream subscription, lifecycle."""
