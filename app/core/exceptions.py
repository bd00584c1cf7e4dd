# app/core/exceptions.py
"""
Exceptions raised by collaborator clients.

Expected waitlist outcomes (not found, conflict, slot unavailable, expired,
invalid token) are returned as result values by the services. Only failures
of an upstream dependency are raised, so callers can retry them.
"""


class UpstreamFailure(Exception):
    """A collaborator call (calendar, notifier) errored or timed out."""

    def __init__(self, service: str, detail: str):
        self.service = service
        self.detail = detail
        super().__init__(f"{service} call failed: {detail}")
