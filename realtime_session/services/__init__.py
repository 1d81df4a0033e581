"""
Services module: network transport for the realtime session.

Key components:
- websocket_transport: WebSocketTransport, a single duplex connection with a
  connection state machine, a single-consumer receive stream, idempotent close
  and a connection-lost callback.
"""

# Services module initialization
