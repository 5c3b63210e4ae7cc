"""Permission names checked by route guards.

Names are stored verbatim in the credential store's ``permissions`` table and
matched exactly against the ``permissions`` claim of a session token.
"""

PERM_PM2_VIEW_BASIC = "pm2.view.basic"
PERM_PM2_VIEW_CWD = "pm2.view.cwd"
PERM_PM2_VIEW_FULL = "pm2.view.full"
PERM_PM2_CONTROL_START = "pm2.control.start"
PERM_PM2_CONTROL_STOP = "pm2.control.stop"
PERM_PM2_CONTROL_RESTART = "pm2.control.restart"

PERM_F2B_VIEW_STATUS = "f2b.view.status"
PERM_F2B_VIEW_JAIL = "f2b.view.jail"
PERM_F2B_CONTROL_UNBAN = "f2b.control.unban"

PERM_USER_VIEW = "user.view"
PERM_USER_CREATE = "user.create"
PERM_USER_EDIT = "user.edit"
PERM_USER_DELETE = "user.delete"
PERM_USER_ROLES_ASSIGN = "user.roles.assign"

PERM_AUTH_LOGIN = "auth.login"
PERM_AUTH_LOGOUT = "auth.logout"
PERM_AUTH_VERIFY = "auth.verify"

ALL_PERMISSIONS = (
    PERM_PM2_VIEW_BASIC,
    PERM_PM2_VIEW_CWD,
    PERM_PM2_VIEW_FULL,
    PERM_PM2_CONTROL_START,
    PERM_PM2_CONTROL_STOP,
    PERM_PM2_CONTROL_RESTART,
    PERM_F2B_VIEW_STATUS,
    PERM_F2B_VIEW_JAIL,
    PERM_F2B_CONTROL_UNBAN,
    PERM_USER_VIEW,
    PERM_USER_CREATE,
    PERM_USER_EDIT,
    PERM_USER_DELETE,
    PERM_USER_ROLES_ASSIGN,
    PERM_AUTH_LOGIN,
    PERM_AUTH_LOGOUT,
    PERM_AUTH_VERIFY,
)
