"""
Auditorium — Live Engagement Core for Webinars
===============================================
Keeps many concurrent viewer sessions consistent with a shared event stream
(chat, Q&A, polls, reactions, presence, watch time) and turns the resulting
interaction ledger into a per-attendee lead score for sales follow-up.

Package layout::

    auditorium/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Palette, milestones, score ranges, limits
    ├── errors.py          # Domain error taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Event Store ORM models
    ├── engine/
    │   ├── events.py      # Engagement kinds + default point table
    │   ├── scoring.py     # Lead-score aggregation (pure)
    │   ├── milestones.py  # Watch milestone math (pure)
    │   ├── polls.py       # Poll option validation + result projection
    │   └── weights.py     # In-memory weight-table cache
    ├── realtime/
    │   ├── messages.py    # ChangeEvent + wire frames
    │   ├── hub.py         # Topic fan-out
    │   ├── presence.py    # Ephemeral membership registry
    │   ├── gateway.py     # Per-connection frame handler
    │   ├── feed.py        # Store mutation → broadcast bridge
    │   └── listener.py    # PG LISTEN/NOTIFY background thread
    ├── client/
    │   ├── transport.py   # Transport protocol + in-memory transport
    │   ├── connection.py  # Owned realtime connection with reconnect
    │   ├── results.py     # MutationResult
    │   ├── writer.py      # Service-backed and HTTP-backed writers
    │   ├── chat.py / qa.py / polls.py / reactions.py  # Sync units
    │   ├── presence.py    # Live viewer view
    │   └── watch.py       # Watch-time tracker
    ├── services/          # Store writes, reporting, reconciliation
    └── api/
        ├── main.py        # FastAPI app
        ├── auth.py        # Bearer JWT → Actor
        └── routes/        # Attendee, host, reporting, WebSocket endpoints
"""

__version__ = "0.1.0"
