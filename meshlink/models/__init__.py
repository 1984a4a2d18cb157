"""
Data models for meshlink.

This module contains Pydantic models used by the session API:

- Session configuration
- Contact and message records
- Sequence results and states
"""

from meshlink.models.records import (
    ContactRecord,
    MessageRecord,
    PartialResultPolicy,
    SequenceResult,
    SequenceState,
    SessionConfig,
)

__all__ = [
    # Configuration
    "SessionConfig",
    "PartialResultPolicy",
    # Records
    "ContactRecord",
    "MessageRecord",
    # Sequences
    "SequenceResult",
    "SequenceState",
]
