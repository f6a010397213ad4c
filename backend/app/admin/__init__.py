from app.admin.availability import (
    CreateAvailabilityArgs,
    UpdateAvailabilityArgs,
    create_template,
    delete_template,
    list_templates,
    serialize_template,
    update_template,
)
from app.admin.bookings import (
    UpdateBookingStatusArgs,
    list_admin_bookings,
    list_tool_bookings,
    serialize_booking,
    update_booking_status,
)
from app.admin.tools import (
    CreateToolArgs,
    UpdateToolArgs,
    create_tool,
    delete_tool,
    find_admin,
    get_owned_tool,
    list_active_tools,
    list_tools,
    serialize_tool,
    update_tool,
)
from app.admin.users import ListUsersArgs, list_admin_users, serialize_user

__all__ = [
    "CreateAvailabilityArgs",
    "UpdateAvailabilityArgs",
    "create_template",
    "delete_template",
    "list_templates",
    "serialize_template",
    "update_template",
    "UpdateBookingStatusArgs",
    "list_admin_bookings",
    "list_tool_bookings",
    "serialize_booking",
    "update_booking_status",
    "CreateToolArgs",
    "UpdateToolArgs",
    "create_tool",
    "delete_tool",
    "find_admin",
    "get_owned_tool",
    "list_active_tools",
    "list_tools",
    "serialize_tool",
    "update_tool",
    "ListUsersArgs",
    "list_admin_users",
    "serialize_user",
]
