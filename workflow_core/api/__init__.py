"""HTTP and WebSocket API for the workflow core service."""
