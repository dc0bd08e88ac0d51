from .calendar import CalendarDay, STATE_AVAILABLE, STATE_CHECKOUT_HOLD, STATE_ADMIN_HOLD, STATE_SOLD, STATES
from .audit import AuditLog, AUDIT_ACTIONS
from .settings import SalesSettings, SETTINGS_ROW_ID
from .sequences import OrderSequence
from .auth import AdminUser, SessionToken

__all__ = [
    'CalendarDay', 'STATE_AVAILABLE', 'STATE_CHECKOUT_HOLD', 'STATE_ADMIN_HOLD', 'STATE_SOLD', 'STATES',
    'AuditLog', 'AUDIT_ACTIONS',
    'SalesSettings', 'SETTINGS_ROW_ID',
    'OrderSequence',
    'AdminUser', 'SessionToken',
]
