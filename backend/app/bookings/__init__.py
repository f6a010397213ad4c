from app.bookings.availability import (
    AvailabilityArgs,
    Window,
    day_of_week,
    find_available_slots,
    generate_slots,
    get_active_windows,
    parse_availability_args,
    require_active_tool,
    resolve_requested_date,
)
from app.bookings.conflicts import (
    Slot,
    filter_available_slots,
    find_conflicting_booking,
    intervals_overlap,
    is_slot_available,
)
from app.bookings.create_booking import (
    CreateBookingArgs,
    create_booking,
    parse_create_booking_args,
)
from app.bookings.lifecycle import LIVE_BOOKING_STATUSES, BookingStatus, resolve_status_transition
from app.bookings.list_bookings import list_user_bookings, parse_list_bookings_args
from app.bookings.tool_config import ToolConfig, parse_tool_config

__all__ = [
    "AvailabilityArgs",
    "Window",
    "day_of_week",
    "find_available_slots",
    "generate_slots",
    "get_active_windows",
    "parse_availability_args",
    "require_active_tool",
    "resolve_requested_date",
    "Slot",
    "filter_available_slots",
    "find_conflicting_booking",
    "intervals_overlap",
    "is_slot_available",
    "CreateBookingArgs",
    "create_booking",
    "parse_create_booking_args",
    "LIVE_BOOKING_STATUSES",
    "BookingStatus",
    "resolve_status_transition",
    "list_user_bookings",
    "parse_list_bookings_args",
    "ToolConfig",
    "parse_tool_config",
]
