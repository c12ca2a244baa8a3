# Services package init
"""
ScribeConnect Backend: Services Layer
======================================

What:  Business rules between routes (HTTP/WebSocket) and the database.
How:   Services receive the AsyncSession and the caller's UserSession for each
       call and return ORM rows or response schemas. Routes stay thin.

Service Inventory:
    - ProfileService: registration and profile edits
    - ExamService: exam creation and listing
    - WriterMatcher: candidate writers for an exam, experienced first
    - RequestLifecycleController: create / transition / delete match requests
    - NotificationService: a user's match requests with contact and exam details
    - ChangeFeed (abstract) / PostgresChangeFeed: LISTEN/NOTIFY on match_requests
    - RealtimeNotificationBridge / BridgeRegistry: push refreshed lists per session
    - AuditLogger (abstract) / DatabaseAuditLogger: fire-and-forget audit trail
"""
