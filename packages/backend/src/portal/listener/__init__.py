"""Change listener — PG LISTEN/NOTIFY feeding push fan-out and WebSockets.

Learn: the listener is the server's own subscription to the change
stream. It runs inside the API process by default (PORTAL_RUN_LISTENER)
or as a separate process (portal-listener) for crash isolation. Running
both means double notifications; that is a known, accepted limitation.
"""
