"""Game domain services: board engine, session store, state machine and
durable records.

Socket handlers and HTTP routes import from here; nothing in this package
knows about the transport beyond the Publisher interface.
"""
