"""Real-time infrastructure — Redis pub/sub + WebSocket.

Learn: change events flow through two hops:
1. ChangeListener (Postgres LISTEN) → Redis PUBLISH on portal:changes
2. Redis SUBSCRIBE → /ws/messages → client ChangeEventBridge

Redis decouples the single Postgres listener from however many WebSocket
clients (and API worker processes) are connected.
"""
