# Routes package init
"""
ScribeConnect Backend: API Routes Package
==========================================

Route Inventory:
    - profiles.py:  POST /api/profiles, GET/PATCH /api/profiles/me
    - exams.py:     POST/GET /api/exams, DELETE /api/exams/{id},
                    GET /api/exams/{id}/candidates
    - requests.py:  POST/GET /api/requests, PATCH/DELETE /api/requests/{id},
                    POST /api/requests/bulk-delete
    - audit.py:     POST /api/audit/events
    - realtime.py:  WebSocket /ws/notifications
    - health.py:    GET /health

Routes stay thin: resolve the UserSession, call one service, shape the
response. Business rules live in services/.
"""
