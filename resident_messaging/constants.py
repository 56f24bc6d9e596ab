DEFAULT_ROLES = [
    ("RESIDENT", "Resident portal access"),
    ("ADMIN", "Community administrator who can message residents"),
    ("SYSADMIN", "System administrator with full access"),
]

PRIORITIES = ("low", "medium", "high", "urgent")

# Higher number sorts first in the inbox
PRIORITY_RANK = {
    "low": 1,
    "medium": 2,
    "high": 3,
    "urgent": 4,
}

RECIPIENT_MODES = ("all", "building", "individual")

INBOX_MESSAGE_TYPES = ("notification", "photo_rejection", "photo_approval", "alert", "general")

BROADCAST_TYPES = ("emergency", "notice", "info")

# Broadcast entries carry a type rather than a priority
PRIORITY_TO_BROADCAST_TYPE = {
    "low": "info",
    "medium": "info",
    "high": "notice",
    "urgent": "emergency",
}

DEFAULT_PHOTO_REJECTION_REASON = "Does not meet community guidelines"

DEFAULT_MESSAGE_TEMPLATES = [
    {
        "template_name": "Pool Closure",
        "subject_template": "Pool Closed",
        "content_template": (
            "The pool will be closed today for scheduled maintenance.\n"
            "We apologize for the inconvenience.\n\n{{ sender_name }}"
        ),
        "is_default": True,
    },
    {
        "template_name": "Water Shutoff",
        "subject_template": "Scheduled Water Shutoff on {{ current_date }}",
        "content_template": (
            "Water service will be interrupted for plumbing repairs.\n"
            "Please plan accordingly.\n\n{{ community_name }}"
        ),
        "is_default": False,
    },
    {
        "template_name": "Community Meeting",
        "subject_template": "Community Meeting Reminder",
        "content_template": (
            "A reminder that the next community meeting is coming up.\n"
            "All residents are welcome to attend.\n\n{{ community_name }}"
        ),
        "is_default": False,
    },
]
