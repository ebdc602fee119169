"""School notification dispatch and delivery tracking.

This feature sends guardian notifications (absences, grades, events) over
email, two SMS carriers, a chat gateway and in-app storage, and tracks each
delivery attempt through its lifecycle:

- Routing: per-recipient channel and category opt-ins, fixed channel priority
- Providers: one adapter interface, carrier specifics injected as profiles
- Tokens: single-flight client-credentials cache shared by the carriers
- State: queued -> sent -> delivered/failed -> opened -> clicked (email)
- Ingestion: idempotent carrier delivery reports and status polling
- Engagement: open pixel and click redirect that never fail visibly
- Reminders: at-most-once sweep for recipients who never opened an email

Example:
    ```python
    orchestrator = DispatchOrchestrator(registry)
    attempts = await orchestrator.send_one(
        session,
        Recipient.from_profile(profile),
        Category.ATTENDANCE,
        ComposedMessage(subject="Absence", body="Amina was absent today."),
        message_ref="attendance-2024-10-01",
    )
    ```
"""
