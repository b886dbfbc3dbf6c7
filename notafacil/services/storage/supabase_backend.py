"""
Supabase Backing Store Implementation

DESIGN DECISION: Supabase provides everything the core consumes from
"the backend" in one SDK:
1. Auth (session resolution, password, sign-up, magic links)
2. A Postgres table of invoices protected by row-level security
3. Realtime postgres_changes events for that table

TRADEOFFS:
- The anon key is public; authorization lives entirely in RLS policies
- Realtime delivery is at-most-once; a missed event is repaired by the
  next bulk load (page refresh), not by this layer

The implementation follows the abstract interface, so the gateway and
the realtime feed never import the SDK.
"""

from typing import Any, Optional

import structlog
from supabase import AsyncClient, acreate_client

from notafacil.config import SupabaseSettings, get_settings
from notafacil.models.events import ChangeEvent
from notafacil.services.storage.interface import (
    AuthUser,
    InvoiceBackend,
    StorageError,
)
from notafacil.services.storage.subscription import QueueSubscription


logger = structlog.get_logger(__name__)


def _to_auth_user(user: Any) -> Optional[AuthUser]:
    if user is None:
        return None
    metadata = getattr(user, "user_metadata", None) or {}
    return AuthUser(
        id=str(user.id),
        email=getattr(user, "email", None),
        full_name=metadata.get("full_name"),
    )


class SupabaseInvoiceBackend(InvoiceBackend):
    """
    InvoiceBackend on top of the async Supabase client.

    Use SupabaseInvoiceBackend.connect() to build one from settings.
    """

    def __init__(
        self,
        client: AsyncClient,
        settings: Optional[SupabaseSettings] = None,
    ):
        self._client = client
        self._settings = settings or get_settings().supabase

    @classmethod
    async def connect(
        cls,
        settings: Optional[SupabaseSettings] = None,
    ) -> "SupabaseInvoiceBackend":
        """Create the async client from settings."""
        settings = settings or get_settings().supabase
        try:
            client = await acreate_client(settings.url, settings.anon_key)
        except Exception as e:
            raise StorageError(f"Failed to connect to Supabase: {e}") from e
        return cls(client, settings)

    def _table(self):
        return self._client.table(self._settings.invoices_table)

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    async def get_current_user(self) -> Optional[AuthUser]:
        try:
            response = await self._client.auth.get_user()
        except Exception as e:
            # An expired or revoked session resolves to "no user"
            logger.warning("auth_get_user_failed", error=str(e))
            return None
        if response is None:
            return None
        return _to_auth_user(response.user)

    async def sign_in_with_password(self, email: str, password: str) -> AuthUser:
        try:
            response = await self._client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except Exception as e:
            raise StorageError(f"Sign-in failed: {e}") from e
        user = _to_auth_user(response.user)
        if user is None:
            raise StorageError("Sign-in returned no user")
        return user

    async def sign_up(
        self,
        email: str,
        password: str,
        full_name: Optional[str] = None,
    ) -> Optional[AuthUser]:
        credentials: dict[str, Any] = {"email": email, "password": password}
        if full_name:
            credentials["options"] = {"data": {"full_name": full_name}}
        try:
            response = await self._client.auth.sign_up(credentials)
        except Exception as e:
            raise StorageError(f"Sign-up failed: {e}") from e
        # No session yet means the confirmation email is pending
        if response.session is None:
            return None
        return _to_auth_user(response.user)

    async def sign_in_with_magic_link(
        self,
        email: str,
        redirect_to: Optional[str] = None,
    ) -> None:
        credentials: dict[str, Any] = {"email": email}
        if redirect_to:
            credentials["options"] = {"email_redirect_to": redirect_to}
        try:
            await self._client.auth.sign_in_with_otp(credentials)
        except Exception as e:
            raise StorageError(f"Magic link request failed: {e}") from e

    async def sign_out(self) -> None:
        try:
            await self._client.auth.sign_out()
        except Exception as e:
            raise StorageError(f"Sign-out failed: {e}") from e

    # -------------------------------------------------------------------------
    # Invoice rows
    # -------------------------------------------------------------------------

    async def fetch_invoices(self, owner_id: str) -> list[dict[str, Any]]:
        try:
            response = await (
                self._table()
                .select("*")
                .eq("user_id", owner_id)
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as e:
            raise StorageError(f"Failed to fetch invoices: {e}") from e
        return list(response.data or [])

    async def insert_invoice(self, record: dict[str, Any]) -> None:
        try:
            await self._table().insert(record).execute()
        except Exception as e:
            raise StorageError(f"Failed to insert invoice: {e}") from e

    async def update_invoice(
        self,
        invoice_id: str,
        owner_id: str,
        fields: dict[str, Any],
    ) -> None:
        try:
            await (
                self._table()
                .update(fields)
                .eq("id", invoice_id)
                .eq("user_id", owner_id)
                .execute()
            )
        except Exception as e:
            raise StorageError(f"Failed to update invoice: {e}") from e

    async def delete_invoice(self, invoice_id: str, owner_id: str) -> None:
        try:
            await (
                self._table()
                .delete()
                .eq("id", invoice_id)
                .eq("user_id", owner_id)
                .execute()
            )
        except Exception as e:
            raise StorageError(f"Failed to delete invoice: {e}") from e

    # -------------------------------------------------------------------------
    # Change events
    # -------------------------------------------------------------------------

    async def subscribe(self, owner_id: str) -> QueueSubscription:
        channel = self._client.channel(self._settings.channel_name)

        async def _release() -> None:
            try:
                await self._client.remove_channel(channel)
            except Exception as e:
                logger.warning("realtime_remove_channel_failed", error=str(e))

        subscription = QueueSubscription(on_close=_release)

        def _on_change(payload: dict[str, Any]) -> None:
            try:
                event = ChangeEvent.from_payload(payload)
            except Exception as e:
                logger.warning("realtime_payload_unreadable", error=str(e))
                return
            subscription.push(event)

        try:
            channel.on_postgres_changes(
                "*",
                schema=self._settings.schema_name,
                table=self._settings.invoices_table,
                filter=f"user_id=eq.{owner_id}",
                callback=_on_change,
            )
            await channel.subscribe()
        except Exception as e:
            await subscription.close()
            raise StorageError(f"Failed to open realtime channel: {e}") from e

        return subscription
