"""
ScribeConnect Backend: Application Package
===========================================

What: Backend for a marketplace that matches students (including students with
      disabilities) to verified writers who provide handwriting assistance
      during exams.
Who:  Imported by uvicorn (`scribeconnect.main:app`), Alembic, and pytest.

Architecture Note:
    ┌─────────────────────────────────────┐
    │   Routes (HTTP + WebSocket layer)   │  ← request parsing, status codes
    ├─────────────────────────────────────┤
    │   Services (matching, lifecycle,    │  ← business rules, transition table
    │   realtime bridge, audit logging)   │
    ├─────────────────────────────────────┤
    │   Models & Schemas (Data)           │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │   Database + Change Feed            │  ← async sessions, LISTEN/NOTIFY
    └─────────────────────────────────────┘

    Every service call receives an explicit UserSession (see session.py);
    nothing reads the caller's identity from global state.
"""

__version__ = "1.0.0"
