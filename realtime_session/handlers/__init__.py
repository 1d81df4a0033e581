"""
Handlers module: routing of realtime events to subscribers.

Key components:
- event_dispatcher: persistent and one-shot subscriptions keyed by event type,
  token-based removal, the `wait_for_next` rendezvous, and fan-out to the
  `realtime.event`, `server.all` and `client.all` wildcard buckets.
"""

# Handlers module initialization
