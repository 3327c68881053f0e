"""Staff roles and the permissions each role carries"""

ADMIN = 'admin'
MANAGER = 'manager'
TECHNICIAN = 'technician'
SALES = 'sales'
CUSTOMER_SERVICE = 'customer_service'

ROLE_CHOICES = [
    (ADMIN, 'Admin'),
    (MANAGER, 'Manager'),
    (TECHNICIAN, 'Technician'),
    (SALES, 'Sales'),
    (CUSTOMER_SERVICE, 'Customer Service'),
]

ALL_ROLES = tuple(role for role, _ in ROLE_CHOICES)

ROLE_PERMISSIONS = {
    ADMIN: frozenset([
        'view_dashboard',
        'manage_users',
        'manage_locations',
        'view_analytics',
        'manage_inventory',
        'manage_expenses',
        'manage_settings',
        'view_reports',
        'manage_devices',
        'manage_customers',
        'manage_appointments',
        'manage_sales',
    ]),
    MANAGER: frozenset([
        'view_dashboard',
        'view_customers',
        'manage_customers',
        'view_inventory',
        'view_reports',
    ]),
    TECHNICIAN: frozenset([
        'view_dashboard',
        'manage_devices',
        'view_customers',
        'manage_appointments',
        'view_inventory',
        'update_repairs',
    ]),
    SALES: frozenset([
        'view_dashboard',
        'manage_sales',
        'view_customers',
        'manage_appointments',
        'view_inventory',
        'create_invoices',
    ]),
    CUSTOMER_SERVICE: frozenset([
        'view_dashboard',
        'view_customers',
        'view_inventory',
    ]),
}


def permissions_for_role(role):
    return ROLE_PERMISSIONS.get(role, frozenset())
