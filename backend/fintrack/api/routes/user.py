import logging
from datetime import datetime, timezone
from typing import Dict, List

import aiosqlite
from fastapi import APIRouter, Depends, Response

from ..schemas import ErrorResponse, SuccessResponse
from ...auth.dependencies import get_current_identity, get_tenant_connection
from ...auth.gate import IdentityContext
from ...models.auth_models import (
    CategoryResponse,
    DataExport,
    DeleteAccountRequest,
    ExportedUser,
    MessageResponse,
    ProfileUpdateRequest,
    SettingsUpdateRequest,
    UserResponse,
)
from ...services.auth_exceptions import ExportFailed
from ...services.service_coordinator import get_auth_service
from ...services.tenant_store import TenantConnection
from .auth import clear_refresh_cookie

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/user", tags=["user"], responses={401: {"model": ErrorResponse}})


async def _read_settings(connection: TenantConnection) -> Dict[str, str]:
    rows = await connection.fetch_all(
        "SELECT setting_key, setting_value FROM settings WHERE user_id = :user_id ORDER BY setting_key"
    )
    return {row["setting_key"]: row["setting_value"] for row in rows}


@router.get("/profile", response_model=UserResponse)
async def get_profile(identity: IdentityContext = Depends(get_current_identity)):
    principal = await get_auth_service().get_principal(identity.user_id)
    return UserResponse.from_principal(principal)


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    payload: ProfileUpdateRequest,
    identity: IdentityContext = Depends(get_current_identity),
):
    principal = await get_auth_service().update_profile(
        identity.user_id,
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
    )
    return UserResponse.from_principal(principal)


@router.get("/settings", response_model=Dict[str, str])
async def get_settings(connection: TenantConnection = Depends(get_tenant_connection)):
    return await _read_settings(connection)


@router.put("/settings", response_model=Dict[str, str])
async def update_settings(
    payload: SettingsUpdateRequest,
    connection: TenantConnection = Depends(get_tenant_connection),
):
    """Upsert the given settings and return the full set"""
    try:
        for key, value in payload.settings.items():
            await connection.execute("""
                INSERT INTO settings (user_id, setting_key, setting_value, updated_at)
                VALUES (:user_id, :key, :value, CURRENT_TIMESTAMP)
                ON CONFLICT(user_id, setting_key) DO UPDATE SET
                    setting_value = excluded.setting_value,
                    updated_at = CURRENT_TIMESTAMP
            """, {"key": key, "value": value})
        await connection.commit()
    except Exception:
        await connection.rollback()
        raise

    logger.info(f"Updated {len(payload.settings)} settings for user {connection.tenant_id}")
    return await _read_settings(connection)


@router.get("/categories", response_model=List[CategoryResponse])
async def list_categories(connection: TenantConnection = Depends(get_tenant_connection)):
    rows = await connection.fetch_all("""
        SELECT id, name, color, type, is_default FROM categories
        WHERE user_id = :user_id
        ORDER BY type, is_default DESC, name
    """)
    return [
        CategoryResponse(
            id=row["id"],
            name=row["name"],
            color=row["color"],
            type=row["type"],
            is_default=bool(row["is_default"]),
        )
        for row in rows
    ]


@router.get("/export", response_model=SuccessResponse[DataExport])
async def export_data(
    identity: IdentityContext = Depends(get_current_identity),
    connection: TenantConnection = Depends(get_tenant_connection),
):
    """Download the profile with every transaction, category and setting"""
    principal = identity.principal
    try:
        transactions = await connection.fetch_all("""
            SELECT id, amount, type, category_id, date, note, created_at, updated_at
            FROM transactions WHERE user_id = :user_id
            ORDER BY date DESC
        """)
        categories = await connection.fetch_all("""
            SELECT id, name, color, type, is_default, created_at
            FROM categories WHERE user_id = :user_id
            ORDER BY name
        """)
        user_settings = await _read_settings(connection)
    except aiosqlite.Error as e:
        raise ExportFailed(f"Export for user {principal.id} failed: {e}") from e

    logger.info(f"Exported {len(transactions)} transactions for user {principal.id}")
    return SuccessResponse(
        message="Export completed",
        data=DataExport(
            export_date=datetime.now(timezone.utc),
            user=ExportedUser(
                id=principal.id,
                username=principal.username,
                email=principal.email,
                first_name=principal.first_name,
                last_name=principal.last_name,
                created_at=principal.created_at,
            ),
            transactions=transactions,
            categories=categories,
            settings=user_settings,
        ),
    )


@router.delete("/account", response_model=MessageResponse)
async def delete_account(
    payload: DeleteAccountRequest,
    response: Response,
    identity: IdentityContext = Depends(get_current_identity),
):
    """Permanently delete the account and all of its finance data"""
    await get_auth_service().delete_account(identity.user_id, payload.password)
    clear_refresh_cookie(response)
    return MessageResponse(message="Account deleted")
