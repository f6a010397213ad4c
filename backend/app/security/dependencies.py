import logging

from fastapi import Header, HTTPException, status

from app.config import admin_api_key, current_env

logger = logging.getLogger("mchattools.security")


def _is_dev_env() -> bool:
    return current_env() in {"dev", "development", "local"}


def require_admin_api_key(
    x_admin_key: str | None = Header(default=None, alias="X-Admin-Key"),
) -> None:
    configured_key = admin_api_key()

    if not configured_key:
        if _is_dev_env():
            logger.warning(
                "ADMIN_API_KEY is not set in dev; allowing admin request without key."
            )
            return
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "ADMIN_AUTH_NOT_CONFIGURED",
                "human_message": "Admin API key is not configured.",
            },
        )

    if x_admin_key != configured_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "INVALID_ADMIN_API_KEY",
                "human_message": "Invalid admin API key.",
            },
        )


def require_admin_id(
    x_admin_id: str | None = Header(default=None, alias="X-Admin-Id"),
) -> str:
    admin_id = (x_admin_id or "").strip()
    if not admin_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "MISSING_ADMIN_ID",
                "human_message": "X-Admin-Id header is required.",
            },
        )
    return admin_id
