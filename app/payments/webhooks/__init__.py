"""
Payment backend webhooks.

- views: Signature-checked endpoint that stores and queues events
- handlers: Per-event-type handlers and the dispatch registry

Events are processed by payments.tasks.process_webhook_event.
"""
