"""Typed exceptions for the group synchronization job."""
from __future__ import annotations


class SyncError(Exception):
    """Base exception for all synchronization failures."""
    pass


class ValidationError(SyncError):
    """A directory payload did not match its expected shape.
    
    Attributes:
        field: Dotted path of the offending field (e.g. "responses[3].status")
        message: Human readable reason
    """
    
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class AuthenticationError(SyncError):
    """Token acquisition failed or the token response was rejected."""
    pass


class GraphAPIError(SyncError):
    """Page-level or batch-level HTTP error from Microsoft Graph.
    
    Attributes:
        status_code: HTTP status code (0 when no response was received)
        message: Error message from response
        endpoint: API endpoint that failed
    """
    
    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class BatchItemError(SyncError):
    """A single batch sub-response could not be turned into a member.
    
    Only raised while interpreting one sub-response; the fetcher converts
    it into a failure item.
    """
    
    def __init__(self, item_id: str, status: int, error_code: str, message: str):
        self.item_id = item_id
        self.status = status
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{status}] {item_id}: {error_code}: {message}")


class StoreError(SyncError):
    """Local user store failure during a reconciliation phase."""
    
    def __init__(self, phase: str, message: str):
        self.phase = phase
        self.message = message
        super().__init__(f"{phase}: {message}")


class SyncAbortedError(SyncError):
    """The run was refused before touching the store."""
    pass
