"""
Capability definitions and role mappings.

WHY: Routes check one named capability each; which roles hold a capability is
decided here and nowhere else. The ledger services never see roles.

DESIGN PRINCIPLES:
- Capabilities are granular (one action per capability)
- Categories group related capabilities for display
- super_admin holds every capability
"""

# =============================================================================
# CAPABILITY CATEGORIES
# =============================================================================

class PermissionCategory:
    """Capability categories for organization."""
    INVENTORY = "INVENTORY"
    PLANNING = "PLANNING"
    ALERTS = "ALERTS"
    USERS = "USERS"
    SYSTEM = "SYSTEM"


# =============================================================================
# CAPABILITY DEFINITIONS
# =============================================================================

# Each capability is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    ("VIEW_INVENTORY", "View Inventory", "View products and current stock", PermissionCategory.INVENTORY),
    ("MANAGE_PRODUCTS", "Manage Products", "Create, edit, deactivate and delete products", PermissionCategory.INVENTORY),
    ("STOCK_IN", "Stock In", "Record inbound stock movements", PermissionCategory.INVENTORY),
    ("STOCK_OUT", "Stock Out", "Record outbound stock movements", PermissionCategory.INVENTORY),
    ("VIEW_TRANSACTIONS", "View Transactions", "View the full stock ledger", PermissionCategory.INVENTORY),
    ("VIEW_PLANS", "View Plans", "View weekly stock plans and consumption", PermissionCategory.PLANNING),
    ("MANAGE_PLANS", "Manage Plans", "Create and update weekly stock plans", PermissionCategory.PLANNING),
    ("VIEW_ALERTS", "View Alerts", "View unresolved low-stock alerts", PermissionCategory.ALERTS),
    ("CHECK_ALERTS", "Check Alerts", "Run the low-stock check", PermissionCategory.ALERTS),
    ("RESOLVE_ALERTS", "Resolve Alerts", "Resolve low-stock alerts", PermissionCategory.ALERTS),
    ("VIEW_DASHBOARD", "View Dashboard", "View dashboard statistics", PermissionCategory.SYSTEM),
    ("MANAGE_USERS", "Manage Users", "Create users and assign roles", PermissionCategory.USERS),
]

ALL_PERMISSIONS = frozenset(code for code, _, _, _ in PERMISSION_DEFINITIONS)


def permission_catalog() -> list[dict]:
    """Capability definitions for display, in definition order."""
    return [
        {"code": code, "name": name, "description": description, "category": category}
        for code, name, description, category in PERMISSION_DEFINITIONS
    ]


# =============================================================================
# ROLES
# =============================================================================

SUPER_ADMIN = "super_admin"
MASTER_INVENTORY_HANDLER = "master_inventory_handler"
STOCK_IN_MANAGER = "stock_in_manager"
STOCK_OUT_MANAGER = "stock_out_manager"
WEEKLY_STOCK_PLANNER = "weekly_stock_planner"

ROLES = (
    SUPER_ADMIN,
    MASTER_INVENTORY_HANDLER,
    STOCK_IN_MANAGER,
    STOCK_OUT_MANAGER,
    WEEKLY_STOCK_PLANNER,
)

ROLE_CAPABILITIES = {
    SUPER_ADMIN: ALL_PERMISSIONS,
    MASTER_INVENTORY_HANDLER: frozenset({
        "VIEW_INVENTORY", "MANAGE_PRODUCTS", "STOCK_IN", "STOCK_OUT", "VIEW_TRANSACTIONS",
        "VIEW_PLANS", "VIEW_ALERTS", "CHECK_ALERTS", "RESOLVE_ALERTS", "VIEW_DASHBOARD",
    }),
    STOCK_IN_MANAGER: frozenset({"VIEW_INVENTORY", "STOCK_IN", "VIEW_DASHBOARD"}),
    STOCK_OUT_MANAGER: frozenset({"VIEW_INVENTORY", "STOCK_OUT", "VIEW_DASHBOARD"}),
    WEEKLY_STOCK_PLANNER: frozenset({
        "VIEW_INVENTORY", "VIEW_PLANS", "MANAGE_PLANS", "VIEW_ALERTS", "CHECK_ALERTS",
        "RESOLVE_ALERTS", "VIEW_DASHBOARD",
    }),
}


def get_permissions_for_roles(roles) -> set[str]:
    perms: set[str] = set()
    for role in roles or []:
        perms |= ROLE_CAPABILITIES.get(role, frozenset())
    return perms


def user_has_permission(user, permission_code: str) -> bool:
    if user is None or not user.is_active:
        return False
    return permission_code in get_permissions_for_roles(user.roles)
