"""Client-side sync — transcript store, change bridge, sidebar read model.

Learn: the pieces, bottom-up:

    MessageStore       pure merge rules + listeners        (store.py)
    ChangeEventBridge  one live change subscription/process (bridge.py)
    SidebarAggregator  per-conversation read model          (sidebar.py)
    ChatSession        polls, resync triggers, sending      (session.py)

Everything runs on one asyncio event loop; no locks are needed because
every store mutation is a synchronous call between awaits.
"""
