"""Portal — WhatsApp inbox sync.

Two halves share this package: the server (FastAPI app, Postgres change
listener, Web Push fan-out) and the client sync library that keeps a
conversation transcript consistent across optimistic writes, live change
events, and snapshot polls.
"""

__version__ = "0.1.0"
