ROLE_ADMIN = "Admin"
ROLE_MANAGER = "Manager"
ROLE_BST = "BST"
ROLE_SALES_REP = "Sales Rep"
ROLE_RND = "R&D"
ROLE_CUSTOMER = "Customer"

OFFICES = ("Marion Office", "Harbor Office")

# (name, category, description)
DEFAULT_PERMISSIONS = [
    ("orders.view", "orders", "View orders"),
    ("orders.view_all", "orders", "View all orders regardless of sales rep"),
    ("orders.create", "orders", "Create new orders"),
    ("orders.edit", "orders", "Edit order details"),
    ("orders.delete", "orders", "Delete orders"),
    ("orders.advance_stage", "orders", "Move orders to the next stage"),
    ("users.view", "users", "View users"),
    ("users.create", "users", "Create users"),
    ("users.edit", "users", "Edit users"),
    ("users.delete", "users", "Deactivate users"),
    ("roles.view", "roles", "View roles and permissions"),
    ("roles.create", "roles", "Create roles"),
    ("roles.edit", "roles", "Edit roles"),
    ("roles.delete", "roles", "Delete roles"),
    ("files.view", "files", "View and download files"),
    ("files.upload", "files", "Upload files"),
    ("files.delete", "files", "Delete files"),
    ("documents.view", "documents", "View documents"),
    ("documents.create", "documents", "Create documents"),
    ("documents.send", "documents", "Send documents for signing"),
    ("messages.view", "messages", "View order messages"),
    ("messages.send", "messages", "Send order messages"),
    ("messages.view_internal", "messages", "View internal messages"),
    ("emails.view", "emails", "View sent emails"),
    ("emails.send", "emails", "Send emails"),
    ("pay.plan.view", "pay", "View pay plans"),
    ("pay.plan.edit", "pay", "Edit pay plans"),
    ("pay.ledger.view", "pay", "View the pay ledger"),
    ("pay.ledger.edit", "pay", "Generate and adjust the pay ledger"),
    ("settings.view", "settings", "View settings"),
    ("settings.edit", "settings", "Edit settings"),
]

ALL_PERMISSION_NAMES = [name for name, _category, _description in DEFAULT_PERMISSIONS]

_ORDER_PERMISSIONS = [
    "orders.view",
    "orders.view_all",
    "orders.create",
    "orders.edit",
    "orders.delete",
    "orders.advance_stage",
]
_DOCUMENT_PERMISSIONS = ["documents.view", "documents.create", "documents.send"]
_EMAIL_PERMISSIONS = ["emails.view", "emails.send"]

ROLE_DEFINITIONS = {
    ROLE_ADMIN: {
        "description": "Full system access",
        "permissions": ALL_PERMISSION_NAMES,
    },
    ROLE_MANAGER: {
        "description": "Manage orders, users and team settings",
        "permissions": _ORDER_PERMISSIONS
        + ["users.view", "users.create", "users.edit", "users.delete", "roles.view"]
        + ["files.view", "files.upload", "files.delete"]
        + _DOCUMENT_PERMISSIONS
        + ["messages.view", "messages.send", "messages.view_internal"]
        + _EMAIL_PERMISSIONS
        + ["pay.plan.view", "pay.plan.edit", "settings.view"],
    },
    ROLE_BST: {
        "description": "Building Success Team - post-sale fulfillment",
        "permissions": [
            "orders.view",
            "orders.view_all",
            "orders.edit",
            "orders.advance_stage",
            "files.view",
            "files.upload",
        ]
        + _DOCUMENT_PERMISSIONS
        + ["messages.view", "messages.send", "messages.view_internal"]
        + _EMAIL_PERMISSIONS,
    },
    ROLE_SALES_REP: {
        "description": "Create and manage their own orders",
        "permissions": [
            "orders.view",
            "orders.create",
            "orders.edit",
            "files.view",
            "files.upload",
        ]
        + _DOCUMENT_PERMISSIONS
        + ["messages.view", "messages.send"]
        + _EMAIL_PERMISSIONS,
    },
    ROLE_RND: {
        "description": "Research and development - read-only order access",
        "permissions": [
            "orders.view",
            "orders.view_all",
            "files.view",
            "documents.view",
            "messages.view",
        ],
    },
    ROLE_CUSTOMER: {
        "description": "Customer portal access",
        "permissions": [
            "orders.view",
            "files.view",
            "files.upload",
            "documents.view",
            "messages.view",
            "messages.send",
        ],
    },
}

# (name, color, is_default, is_final)
DEFAULT_ORDER_STAGES = [
    ("Deposit Placed", "#6366F1", True, False),
    ("Card Charged", "#8B5CF6", False, False),
    ("Sent for Signing", "#A855F7", False, False),
    ("Customer Signed", "#D946EF", False, False),
    ("Sent to Manufacturer", "#EC4899", False, False),
    ("Success Team Contact", "#F43F5E", False, False),
    ("Checklist Sent", "#F97316", False, False),
    ("Completed", "#22C55E", False, True),
]

ORDER_STATUSES = ("ACTIVE", "COMPLETED", "CANCELLED", "ON_HOLD")
PRIORITIES = ("LOW", "NORMAL", "HIGH", "URGENT")

WC_STATUSES = ("Pending", "No Contact Made", "Contact Made")
LPP_STATUSES = ("Pending", "Ready for Install")

DEPOSIT_CHARGE_STATUSES = (
    "Ready",
    "Charged",
    "Declined",
    "Accepted After Decline",
    "Refunded",
)

ORDER_BOOLEAN_FIELDS = {
    "depositCollected": ("deposit_collected", "deposit_date", "Deposit Collected"),
    "sentToCustomer": ("sent_to_customer", "sent_to_customer_date", "Sent to Customer"),
    "customerSigned": ("customer_signed", "customer_signed_date", "Customer Signed"),
    "sentToManufacturer": (
        "sent_to_manufacturer",
        "sent_to_manufacturer_date",
        "Sent to Manufacturer",
    ),
}

ORDER_BST_FIELDS = {
    "wcStatus": ("wc_status", "wc_status_date", "WC Status", WC_STATUSES),
    "lppStatus": ("lpp_status", "lpp_status_date", "LP&P Status", LPP_STATUSES),
}

TICKET_TYPES = (
    "WELCOME_CALL",
    "LPP",
    "BUILDING_UPDATE",
    "INFO_UPDATE",
    "MANUFACTURER_CHANGE",
    "OTHER",
)
TICKET_STATUSES = ("OPEN", "IN_PROGRESS", "PENDING", "RESOLVED", "CLOSED")
TICKET_ACTIVE_STATUSES = ("OPEN", "IN_PROGRESS", "PENDING")
TICKET_DONE_STATUSES = ("RESOLVED", "CLOSED")

FILE_CATEGORIES = ("CONTRACT", "INVOICE", "BLUEPRINT", "PHOTO", "PERMIT", "OTHER")
MAX_FILE_SIZE = 10 * 1024 * 1024

DOCUMENT_STATUSES = ("DRAFT", "SENT", "VIEWED", "SIGNED", "EXPIRED", "CANCELLED")

LEDGER_STATUSES = ("PENDING", "REVIEWED", "APPROVED")
TIER_TYPES = ("BUILDINGS_SOLD", "ORDER_TOTAL")
BONUS_TYPES = ("FLAT", "PERCENTAGE")

PASSWORD_HISTORY_DEPTH = 3
RESET_TOKEN_TTL_SECONDS = 60 * 60
