from enum import Enum


class TeamRole(str, Enum):
    ADMIN = "admin"
    ACCOUNTANT = "accountant"
    VIEWER = "viewer"
    ASSISTANT = "assistant"


class Permission(str, Enum):
    MANAGE_TEAM = "can_manage_team"
    INVITE_USERS = "can_invite_users"
    REMOVE_USERS = "can_remove_users"
    CHANGE_ROLES = "can_change_roles"
    DELETE_TEAM = "can_delete_team"
    VIEW_INVOICES = "can_view_invoices"
    EDIT_INVOICES = "can_edit_invoices"
    DELETE_INVOICES = "can_delete_invoices"
    MANAGE_QUICKBOOKS = "can_manage_quickbooks"
    USE_AI_TOOLS = "can_use_ai_tools"


ROLE_PERMISSIONS: dict[TeamRole, dict[Permission, bool]] = {
    TeamRole.ADMIN: {p: True for p in Permission},
    TeamRole.ACCOUNTANT: {
        Permission.MANAGE_TEAM: False,
        Permission.INVITE_USERS: False,
        Permission.REMOVE_USERS: False,
        Permission.CHANGE_ROLES: False,
        Permission.DELETE_TEAM: False,
        Permission.VIEW_INVOICES: True,
        Permission.EDIT_INVOICES: True,
        Permission.DELETE_INVOICES: False,
        Permission.MANAGE_QUICKBOOKS: True,
        Permission.USE_AI_TOOLS: True,
    },
    TeamRole.ASSISTANT: {
        Permission.MANAGE_TEAM: False,
        Permission.INVITE_USERS: False,
        Permission.REMOVE_USERS: False,
        Permission.CHANGE_ROLES: False,
        Permission.DELETE_TEAM: False,
        Permission.VIEW_INVOICES: True,
        Permission.EDIT_INVOICES: False,
        Permission.DELETE_INVOICES: False,
        Permission.MANAGE_QUICKBOOKS: False,
        Permission.USE_AI_TOOLS: True,
    },
    TeamRole.VIEWER: {
        Permission.MANAGE_TEAM: False,
        Permission.INVITE_USERS: False,
        Permission.REMOVE_USERS: False,
        Permission.CHANGE_ROLES: False,
        Permission.DELETE_TEAM: False,
        Permission.VIEW_INVOICES: True,
        Permission.EDIT_INVOICES: False,
        Permission.DELETE_INVOICES: False,
        Permission.MANAGE_QUICKBOOKS: False,
        Permission.USE_AI_TOOLS: False,
    },
}


def has_permission(role: str | TeamRole | None, permission: str | Permission) -> bool:
    if role is None:
        return False
    try:
        return ROLE_PERMISSIONS[TeamRole(role)][Permission(permission)]
    except ValueError:
        return False


def get_required_roles_for_permission(permission: str | Permission) -> list[str]:
    permission = Permission(permission)
    return [
        role.value
        for role, permissions in ROLE_PERMISSIONS.items()
        if permissions[permission]
    ]


def get_role_permissions(role: str | TeamRole) -> dict[str, bool]:
    return {p.value: allowed for p, allowed in ROLE_PERMISSIONS[TeamRole(role)].items()}
