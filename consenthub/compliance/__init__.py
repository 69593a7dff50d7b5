"""Privacy compliance rules.

Pure domain logic with no database access:
- dsar: request types, the lifecycle transition table and SLA derivations
- consent: consent statuses and chronological resolution
- notices: privacy notice version numbering

processing.py holds DSARProcessor, which runs automated DSAR fulfilment
against the database; import it from its module.
"""

from __future__ import annotations

from consenthub.compliance.consent import (
    ConsentStatus,
    compliance_score,
    current_by_purpose,
    latest_action_at,
    resolve_current,
)
from consenthub.compliance.dsar import RequestStatus, RequestType, assert_transition
from consenthub.compliance.notices import next_version

__all__ = [
    "ConsentStatus",
    "RequestStatus",
    "RequestType",
    "assert_transition",
    "compliance_score",
    "current_by_purpose",
    "latest_action_at",
    "next_version",
    "resolve_current",
]
