"""Liveness monitor for local processes, TCP sockets and HTTP endpoints."""
