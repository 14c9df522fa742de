"""Relay side: room registry, relay channel and the HTTP/WebSocket app."""
