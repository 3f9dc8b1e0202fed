"""
Central constants for the CTC application.
"""
from __future__ import annotations

# User roles, least to most privileged
ROLE_USER = "user"
ROLE_STUDENT = "ctc_student"
ROLE_TECHNICAL_LEAD = "technical_lead"
ROLE_OPERATOR = "operator"
ROLE_ADMIN = "admin"

VALID_ROLES = (ROLE_USER, ROLE_STUDENT, ROLE_TECHNICAL_LEAD, ROLE_OPERATOR, ROLE_ADMIN)

# Roles an operator may not hand out
ELEVATED_ROLES = frozenset({ROLE_OPERATOR, ROLE_ADMIN})

_STAFF_PERMISSIONS = frozenset(
    {
        "users.view",
        "users.promote",
        "notifications.send",
        "study.manage",
        "tnp.manage",
        "technical_leads.view",
    }
)

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    ROLE_USER: frozenset(),
    ROLE_STUDENT: frozenset(),
    ROLE_TECHNICAL_LEAD: frozenset({"referrals.view_own"}),
    ROLE_OPERATOR: _STAFF_PERMISSIONS,
    ROLE_ADMIN: _STAFF_PERMISSIONS | {"users.promote_elevated", "communities.delete", "diagnostics.view"},
}

COMMUNITY_STATUSES = ("active", "pending", "rejected")
EVENT_TYPES = ("online", "offline", "hybrid")
NOTIFICATION_TYPES = ("info", "success", "warning", "error")

FORM_FIELD_TYPES = frozenset(
    {"text", "email", "number", "phone", "textarea", "select", "radio", "checkbox", "date", "file", "url"}
)
CHOICE_FIELD_TYPES = frozenset({"select", "radio", "checkbox"})

ALLOWED_UPLOAD_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "text/plain",
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/zip",
        "application/x-zip-compressed",
    }
)

DOWNLOAD_USER_AGENT = "CTC-App/1.0"

# Display defaults
UNKNOWN_EVENT = "Unknown Event"
UNKNOWN_TL = "Unknown TL"
ANONYMOUS = "Anonymous"
DEFAULT_FORM_TITLE = "Registration Form"
DEFAULT_TL_BIO = "Technical Lead helping students discover amazing events"
