import json
import logging
import time
import uuid
from typing import Any

from fastapi import BackgroundTasks, Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

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
from app.admin.users import ListUsersArgs, list_admin_users
from app.bookings.availability import (
    day_of_week,
    find_available_slots,
    get_active_windows,
    parse_availability_args,
    require_active_tool,
    resolve_requested_date,
    serialize_slot_start,
)
from app.bookings.create_booking import create_booking, parse_create_booking_args
from app.bookings.errors import (
    BookingConflictError,
    BookingNotFoundError,
    BookingValidationError,
    InvalidStatusTransitionError,
    ToolNotFoundError,
    ToolOwnershipError,
)
from app.bookings.list_bookings import list_user_bookings, parse_list_bookings_args
from app.bookings.tool_config import parse_tool_config
from app.db.repository import SqlAlchemyBookingRepository
from app.db.session import SessionLocal
from app.security.dependencies import require_admin_api_key, require_admin_id
from app.webhooks.delivery import build_webhook_payload, send_webhook
from app.webhooks.events import BOOKING_STATUS_EVENTS, WEBHOOK_EVENTS, emit_webhook_event
from app.webhooks.subscriptions import (
    CreateWebhookArgs,
    UpdateWebhookArgs,
    create_subscription,
    delete_subscription,
    find_subscription,
    list_subscriptions,
    serialize_subscription,
    update_subscription,
)


def configure_logging() -> logging.Logger:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    return logging.getLogger("mchattools.backend")


logger = configure_logging()
app = FastAPI(title="Mchat-Tools Booking Backend")

admin_dependencies = [Depends(require_admin_api_key)]


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    start_time = time.perf_counter()

    response = await call_next(request)

    duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
    response.headers["x-request-id"] = request_id

    logger.info(
        json.dumps(
            {
                "event": "http_request",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            }
        )
    )
    return response


def error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def validation_error_response(exc: ValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    return error_response(400, "Invalid request data", details=details)


def tool_not_found_response() -> JSONResponse:
    return error_response(404, "Tool not found or inactive")


def invalid_tool_config_response(tool_id: str) -> JSONResponse:
    logger.error("Stored configuration for tool_id=%s failed validation.", tool_id)
    return error_response(500, "Tool configuration is invalid")


def booking_event_data(result: dict[str, Any], tool_id: str) -> dict[str, Any]:
    return {
        "booking_id": result["booking_id"],
        "tool_id": tool_id,
        "tool_name": result["tool_name"],
        "manychat_user_id": result["manychat_user_id"],
        "start_time": result["start_time"],
        "end_time": result["end_time"],
        "status": result["status"],
        "notes": result["notes"],
    }


@app.get("/health")
async def health():
    return JSONResponse(content={"ok": True})


@app.get("/tools/list")
@app.get("/api/tools/list")
async def tools_list() -> JSONResponse:
    db = SessionLocal()
    try:
        tools = list_active_tools(db)
        return JSONResponse(
            content={
                "tools": [
                    {
                        "id": tool.id,
                        "name": tool.name,
                        "type": tool.type,
                        "description": tool.description,
                    }
                    for tool in tools
                ]
            }
        )
    except Exception:
        logger.exception("Error listing tools")
        return error_response(500, "Failed to list tools")
    finally:
        db.close()


@app.get("/bookings/availability")
@app.get("/api/bookings/availability")
async def bookings_availability(tool_id: str | None = None, date: str | None = None) -> JSONResponse:
    if not tool_id or not date:
        return error_response(400, "tool_id and date are required")
    args = parse_availability_args({"tool_id": tool_id, "date": date})

    db = SessionLocal()
    repository = SqlAlchemyBookingRepository(db)
    try:
        tool = require_active_tool(repository, args.tool_id)
        try:
            config = parse_tool_config(tool.config)
        except ValidationError:
            return invalid_tool_config_response(tool.id)

        requested_day = resolve_requested_date(args.date, config.tzinfo)
        if requested_day is None:
            return error_response(400, "Invalid date")

        windows = get_active_windows(repository, tool.id, day_of_week(requested_day))
        if not windows:
            return JSONResponse(
                content={
                    "tool_id": tool.id,
                    "date": args.date,
                    "available_slots": [],
                    "message": "No availability for this day",
                }
            )

        slots = find_available_slots(repository, tool.id, requested_day, windows, config.tzinfo)
        return JSONResponse(
            content={
                "tool_id": tool.id,
                "date": args.date,
                "available_slots": [serialize_slot_start(slot) for slot in slots],
            }
        )
    except ToolNotFoundError:
        return tool_not_found_response()
    except Exception:
        logger.exception("Error fetching availability for tool_id=%s", tool_id)
        return error_response(500, "Failed to fetch availability")
    finally:
        db.close()


@app.post("/bookings/create")
@app.post("/api/bookings/create")
async def bookings_create(payload: dict[str, Any], background_tasks: BackgroundTasks) -> JSONResponse:
    try:
        args = parse_create_booking_args(payload)
    except ValidationError as exc:
        return validation_error_response(exc)

    db = SessionLocal()
    repository = SqlAlchemyBookingRepository(db)
    try:
        tool = require_active_tool(repository, args.tool_id)
        try:
            config = parse_tool_config(tool.config)
        except ValidationError:
            return invalid_tool_config_response(tool.id)
        result = create_booking(repository, tool, config, args)
    except ToolNotFoundError:
        return tool_not_found_response()
    except BookingConflictError:
        return error_response(409, "Time slot not available")
    except BookingValidationError as exc:
        return error_response(400, str(exc))
    except Exception:
        logger.exception("Error creating booking for tool_id=%s", args.tool_id)
        return error_response(500, "Failed to create booking")
    finally:
        db.close()

    background_tasks.add_task(
        emit_webhook_event,
        tool.admin_id,
        WEBHOOK_EVENTS["BOOKING_CREATED"],
        booking_event_data(result, tool.id),
    )
    return JSONResponse(content=result)


@app.get("/bookings/list")
@app.get("/api/bookings/list")
async def bookings_list(manychat_user_id: str | None = None) -> JSONResponse:
    if not manychat_user_id:
        return error_response(400, "manychat_user_id is required")
    args = parse_list_bookings_args({"manychat_user_id": manychat_user_id})

    db = SessionLocal()
    repository = SqlAlchemyBookingRepository(db)
    try:
        bookings = list_user_bookings(repository, args)
        if bookings is None:
            return JSONResponse(content={"bookings": [], "message": "No user found"})
        return JSONResponse(content={"bookings": bookings})
    except Exception:
        logger.exception("Error listing bookings")
        return error_response(500, "Failed to list bookings")
    finally:
        db.close()


@app.get("/admin/tools", dependencies=admin_dependencies)
async def admin_list_tools(
    type: str | None = None,
    admin_id: str = Depends(require_admin_id),
) -> JSONResponse:
    db = SessionLocal()
    try:
        tools = list_tools(db, admin_id=admin_id, tool_type=type)
        return JSONResponse(content={"tools": [serialize_tool(tool, db=db) for tool in tools]})
    except Exception:
        db.rollback()
        logger.exception("Error listing tools")
        return error_response(500, "Failed to fetch tools")
    finally:
        db.close()


@app.post("/admin/tools", dependencies=admin_dependencies)
async def admin_create_tool(
    payload: dict[str, Any],
    admin_id: str = Depends(require_admin_id),
) -> JSONResponse:
    try:
        args = CreateToolArgs.model_validate(payload)
    except ValidationError as exc:
        return validation_error_response(exc)

    db = SessionLocal()
    try:
        admin = find_admin(db, admin_id=admin_id)
        if admin is None:
            return error_response(404, "Admin not found")
        tool = create_tool(db, admin=admin, args=args)
        return JSONResponse(status_code=201, content={"tool": serialize_tool(tool)})
    except Exception:
        db.rollback()
        logger.exception("Error creating tool")
        return error_response(500, "Failed to create tool")
    finally:
        db.close()


@app.patch("/admin/tools/{tool_id}", dependencies=admin_dependencies)
async def admin_update_tool(
    tool_id: str,
    payload: dict[str, Any],
    admin_id: str = Depends(require_admin_id),
) -> JSONResponse:
    try:
        args = UpdateToolArgs.model_validate(payload)
    except ValidationError as exc:
        return validation_error_response(exc)

    db = SessionLocal()
    try:
        tool = update_tool(db, admin_id=admin_id, tool_id=tool_id, args=args)
        if tool is None:
            return error_response(404, "Tool not found")
        return JSONResponse(content={"tool": serialize_tool(tool)})
    except ToolOwnershipError:
        return error_response(403, "Unauthorized")
    except Exception:
        db.rollback()
        logger.exception("Error updating tool_id=%s", tool_id)
        return error_response(500, "Failed to update tool")
    finally:
        db.close()


@app.delete("/admin/tools/{tool_id}", dependencies=admin_dependencies)
async def admin_delete_tool(tool_id: str, admin_id: str = Depends(require_admin_id)) -> JSONResponse:
    db = SessionLocal()
    try:
        if not delete_tool(db, admin_id=admin_id, tool_id=tool_id):
            return error_response(404, "Tool not found")
        return JSONResponse(content={"success": True})
    except ToolOwnershipError:
        return error_response(403, "Unauthorized")
    except Exception:
        db.rollback()
        logger.exception("Error deleting tool_id=%s", tool_id)
        return error_response(500, "Failed to delete tool")
    finally:
        db.close()


@app.get("/admin/tools/{tool_id}/availability", dependencies=admin_dependencies)
async def admin_list_availability(tool_id: str, admin_id: str = Depends(require_admin_id)) -> JSONResponse:
    db = SessionLocal()
    try:
        tool = get_owned_tool(db, admin_id=admin_id, tool_id=tool_id)
        if tool is None:
            return error_response(404, "Tool not found")
        return JSONResponse(
            content={"availability": [serialize_template(t) for t in list_templates(db, tool)]}
        )
    except ToolOwnershipError:
        return error_response(403, "Unauthorized")
    except Exception:
        db.rollback()
        logger.exception("Error fetching availability templates for tool_id=%s", tool_id)
        return error_response(500, "Failed to fetch availability")
    finally:
        db.close()


@app.post("/admin/tools/{tool_id}/availability", dependencies=admin_dependencies)
async def admin_create_availability(
    tool_id: str,
    payload: dict[str, Any],
    admin_id: str = Depends(require_admin_id),
) -> JSONResponse:
    try:
        args = CreateAvailabilityArgs.model_validate(payload)
    except ValidationError as exc:
        return validation_error_response(exc)

    db = SessionLocal()
    try:
        tool = get_owned_tool(db, admin_id=admin_id, tool_id=tool_id)
        if tool is None:
            return error_response(404, "Tool not found")
        template = create_template(db, tool=tool, args=args)
        return JSONResponse(status_code=201, content={"availability": serialize_template(template)})
    except ToolOwnershipError:
        return error_response(403, "Unauthorized")
    except Exception:
        db.rollback()
        logger.exception("Error creating availability for tool_id=%s", tool_id)
        return error_response(500, "Failed to create availability")
    finally:
        db.close()


@app.patch("/admin/tools/{tool_id}/availability/{template_id}", dependencies=admin_dependencies)
async def admin_update_availability(
    tool_id: str,
    template_id: str,
    payload: dict[str, Any],
    admin_id: str = Depends(require_admin_id),
) -> JSONResponse:
    try:
        args = UpdateAvailabilityArgs.model_validate(payload)
    except ValidationError as exc:
        return validation_error_response(exc)

    db = SessionLocal()
    try:
        tool = get_owned_tool(db, admin_id=admin_id, tool_id=tool_id)
        if tool is None:
            return error_response(404, "Tool not found")
        template = update_template(db, tool=tool, template_id=template_id, args=args)
        if template is None:
            return error_response(404, "Availability not found")
        return JSONResponse(content={"availability": serialize_template(template)})
    except ToolOwnershipError:
        return error_response(403, "Unauthorized")
    except ValueError as exc:
        return error_response(400, str(exc))
    except Exception:
        db.rollback()
        logger.exception("Error updating availability template_id=%s", template_id)
        return error_response(500, "Failed to update availability")
    finally:
        db.close()


@app.delete("/admin/tools/{tool_id}/availability/{template_id}", dependencies=admin_dependencies)
async def admin_delete_availability(
    tool_id: str,
    template_id: str,
    admin_id: str = Depends(require_admin_id),
) -> JSONResponse:
    db = SessionLocal()
    try:
        tool = get_owned_tool(db, admin_id=admin_id, tool_id=tool_id)
        if tool is None:
            return error_response(404, "Tool not found")
        if not delete_template(db, tool=tool, template_id=template_id):
            return error_response(404, "Availability not found")
        return JSONResponse(content={"success": True})
    except ToolOwnershipError:
        return error_response(403, "Unauthorized")
    except Exception:
        db.rollback()
        logger.exception("Error deleting availability template_id=%s", template_id)
        return error_response(500, "Failed to delete availability")
    finally:
        db.close()


@app.get("/admin/tools/{tool_id}/bookings", dependencies=admin_dependencies)
async def admin_list_tool_bookings(tool_id: str, admin_id: str = Depends(require_admin_id)) -> JSONResponse:
    db = SessionLocal()
    try:
        tool = get_owned_tool(db, admin_id=admin_id, tool_id=tool_id)
        if tool is None:
            return error_response(404, "Tool not found")
        return JSONResponse(content={"bookings": list_tool_bookings(db, tool)})
    except ToolOwnershipError:
        return error_response(403, "Unauthorized")
    except Exception:
        db.rollback()
        logger.exception("Error fetching bookings for tool_id=%s", tool_id)
        return error_response(500, "Failed to fetch bookings")
    finally:
        db.close()


@app.patch("/admin/bookings/{booking_id}/status", dependencies=admin_dependencies)
async def admin_update_booking_status(
    booking_id: str,
    payload: dict[str, Any],
    background_tasks: BackgroundTasks,
    admin_id: str = Depends(require_admin_id),
) -> JSONResponse:
    try:
        args = UpdateBookingStatusArgs.model_validate(payload)
    except ValidationError as exc:
        return validation_error_response(exc)

    db = SessionLocal()
    try:
        booking, tool, new_status = update_booking_status(
            db,
            admin_id=admin_id,
            booking_id=booking_id,
            args=args,
        )
        body = serialize_booking(booking)
    except BookingNotFoundError:
        return error_response(404, "Booking not found")
    except ToolOwnershipError:
        return error_response(403, "Unauthorized")
    except InvalidStatusTransitionError as exc:
        return error_response(400, str(exc))
    except Exception:
        db.rollback()
        logger.exception("Error updating status for booking_id=%s", booking_id)
        return error_response(500, "Failed to update booking")
    finally:
        db.close()

    if new_status is not None:
        event_data = {**body, "tool_name": tool.name}
        background_tasks.add_task(
            emit_webhook_event, tool.admin_id, WEBHOOK_EVENTS["BOOKING_UPDATED"], event_data
        )
        status_event = BOOKING_STATUS_EVENTS.get(new_status.value)
        if status_event is not None:
            background_tasks.add_task(emit_webhook_event, tool.admin_id, status_event, event_data)
    return JSONResponse(content={"booking": body})


@app.get("/admin/bookings", dependencies=admin_dependencies)
async def admin_list_bookings(admin_id: str = Depends(require_admin_id)) -> JSONResponse:
    db = SessionLocal()
    try:
        return JSONResponse(content={"bookings": list_admin_bookings(db, admin_id=admin_id)})
    except Exception:
        db.rollback()
        logger.exception("Error fetching bookings for admin_id=%s", admin_id)
        return error_response(500, "Failed to fetch bookings")
    finally:
        db.close()


@app.get("/admin/users", dependencies=admin_dependencies)
async def admin_list_users(request: Request, admin_id: str = Depends(require_admin_id)) -> JSONResponse:
    try:
        args = ListUsersArgs.model_validate(dict(request.query_params))
    except ValidationError as exc:
        return validation_error_response(exc)

    db = SessionLocal()
    try:
        return JSONResponse(content=list_admin_users(db, admin_id=admin_id, args=args))
    except Exception:
        db.rollback()
        logger.exception("Error fetching users for admin_id=%s", admin_id)
        return error_response(500, "Failed to fetch users")
    finally:
        db.close()


@app.get("/admin/webhooks", dependencies=admin_dependencies)
async def admin_list_webhooks(admin_id: str = Depends(require_admin_id)) -> JSONResponse:
    db = SessionLocal()
    try:
        subscriptions = list_subscriptions(db, admin_id=admin_id)
        return JSONResponse(
            content={
                "webhooks": [serialize_subscription(s) for s in subscriptions],
                "available_events": sorted(WEBHOOK_EVENTS.values()),
            }
        )
    except Exception:
        db.rollback()
        logger.exception("Error fetching webhooks")
        return error_response(500, "Failed to fetch webhooks")
    finally:
        db.close()


@app.post("/admin/webhooks", dependencies=admin_dependencies)
async def admin_create_webhook(
    payload: dict[str, Any],
    admin_id: str = Depends(require_admin_id),
) -> JSONResponse:
    try:
        args = CreateWebhookArgs.model_validate(payload)
    except ValidationError as exc:
        return validation_error_response(exc)

    db = SessionLocal()
    try:
        if find_admin(db, admin_id=admin_id) is None:
            return error_response(404, "Admin not found")
        subscription = create_subscription(db, admin_id=admin_id, args=args)
        return JSONResponse(
            status_code=201,
            content={"webhook": serialize_subscription(subscription, include_secret=True)},
        )
    except Exception:
        db.rollback()
        logger.exception("Error creating webhook")
        return error_response(500, "Failed to create webhook")
    finally:
        db.close()


@app.get("/admin/webhooks/{webhook_id}", dependencies=admin_dependencies)
async def admin_get_webhook(webhook_id: str, admin_id: str = Depends(require_admin_id)) -> JSONResponse:
    db = SessionLocal()
    try:
        subscription = find_subscription(db, admin_id=admin_id, webhook_id=webhook_id)
        if subscription is None:
            return error_response(404, "Webhook not found")
        return JSONResponse(
            content={"webhook": serialize_subscription(subscription, include_secret=True)}
        )
    except Exception:
        db.rollback()
        logger.exception("Error fetching webhook_id=%s", webhook_id)
        return error_response(500, "Failed to fetch webhook")
    finally:
        db.close()


@app.patch("/admin/webhooks/{webhook_id}", dependencies=admin_dependencies)
async def admin_update_webhook(
    webhook_id: str,
    payload: dict[str, Any],
    admin_id: str = Depends(require_admin_id),
) -> JSONResponse:
    try:
        args = UpdateWebhookArgs.model_validate(payload)
    except ValidationError as exc:
        return validation_error_response(exc)

    db = SessionLocal()
    try:
        subscription = update_subscription(db, admin_id=admin_id, webhook_id=webhook_id, args=args)
        if subscription is None:
            return error_response(404, "Webhook not found")
        return JSONResponse(content={"webhook": serialize_subscription(subscription)})
    except Exception:
        db.rollback()
        logger.exception("Error updating webhook_id=%s", webhook_id)
        return error_response(500, "Failed to update webhook")
    finally:
        db.close()


@app.delete("/admin/webhooks/{webhook_id}", dependencies=admin_dependencies)
async def admin_delete_webhook(webhook_id: str, admin_id: str = Depends(require_admin_id)) -> Response:
    db = SessionLocal()
    try:
        if not delete_subscription(db, admin_id=admin_id, webhook_id=webhook_id):
            return error_response(404, "Webhook not found")
        return JSONResponse(content={"success": True})
    except Exception:
        db.rollback()
        logger.exception("Error deleting webhook_id=%s", webhook_id)
        return error_response(500, "Failed to delete webhook")
    finally:
        db.close()


@app.post("/admin/webhooks/{webhook_id}/test", dependencies=admin_dependencies)
async def admin_test_webhook(webhook_id: str, admin_id: str = Depends(require_admin_id)) -> JSONResponse:
    db = SessionLocal()
    try:
        subscription = find_subscription(db, admin_id=admin_id, webhook_id=webhook_id)
        if subscription is None:
            return error_response(404, "Webhook not found")

        payload = build_webhook_payload(
            event=WEBHOOK_EVENTS["WEBHOOK_TEST"],
            data={
                "message": "This is a test webhook from Flowkick",
                "webhook_id": subscription.id,
                "webhook_name": subscription.name,
            },
            metadata={"test": True},
        )
        result = send_webhook(db, subscription, payload)
        return JSONResponse(
            content={
                "success": True,
                "test": {
                    "sent": True,
                    "status": "delivered" if result.success else "failed",
                    "status_code": result.status_code,
                    "response_time_ms": result.duration_ms,
                    "error": result.error,
                },
                "message": (
                    "Test webhook delivered successfully"
                    if result.success
                    else "Test webhook failed to deliver"
                ),
            }
        )
    except Exception:
        db.rollback()
        logger.exception("Error testing webhook_id=%s", webhook_id)
        return error_response(500, "Failed to test webhook")
    finally:
        db.close()
