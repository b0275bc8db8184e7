"""Fleet visibility rules.

Rules, in order:
  1. admins see everything;
  2. a caller with no view/create/manage grant on the category sees nothing;
  3. a non-hidden fleet is visible;
  4. a hidden fleet is visible to callers who can create or manage in the
     category, otherwise only from fleet_time - ping_reminder (or fleet_time
     when the category has no reminder).

List queries also drop fleets that started more than LIST_LOOKBACK ago. That
is a query filter applied before pagination, not a visibility rule.
"""

from datetime import datetime, timedelta

from tb_common.auth.permissions import Capabilities

LIST_LOOKBACK = timedelta(hours=1)


def reveal_at(fleet_time: datetime, ping_reminder: timedelta | None) -> datetime:
    """When a hidden fleet becomes visible to view-only callers."""
    if ping_reminder:
        return fleet_time - ping_reminder
    return fleet_time


def is_visible(
    fleet_time: datetime,
    hidden: bool,
    capabilities: Capabilities,
    now: datetime,
    ping_reminder: timedelta | None = None,
) -> bool:
    if capabilities.is_admin:
        return True
    if not (capabilities.can_view or capabilities.can_create or capabilities.can_manage):
        return False
    if not hidden:
        return True
    if capabilities.can_create or capabilities.can_manage:
        return True
    return now >= reveal_at(fleet_time, ping_reminder)


def list_cutoff(now: datetime) -> datetime:
    """Fleets with fleet_time before this are excluded from list queries."""
    return now - LIST_LOOKBACK
