"""
Application Session for NotaFácil

Wires the realtime feed, the optimistic orchestrator, the tool
dispatcher and the chatbot around ONE shared invoice collection, and
keeps them in step with the signed-in user.

DESIGN DECISION: The session is an explicit object, not ambient state.
Everything that needs "who is signed in" asks this object, and every
user change flows through handle_auth_change():

    signed out -> signed in     feed starts, chat begins fresh
    signed in  -> other user    feed restarts, chat begins fresh
    signed in  -> signed out    feed stops, collection emptied

Flow for a UI:
1. session = await create_app_session()
2. await session.start()           # picks up an existing login
3. session.collection.add_listener(render)
4. await session.orchestrator.create(...)  /  await session.chat_agent.send(...)
5. await session.close()
"""

from datetime import date
from typing import Callable, Optional

import structlog

from notafacil.agents.chatbot import InvoiceChatAgent, SessionFactory
from notafacil.agents.dispatch import InvoiceToolDispatcher
from notafacil.agents.observations import ObservationWriter
from notafacil.audit import AuditLogger
from notafacil.config import AppSettings, GeminiSettings, get_settings
from notafacil.models.audit import AuditEventBuilder
from notafacil.orchestrator import FailureNotifier, InvoiceOrchestrator, log_failure
from notafacil.realtime import InvoiceCollection, RealtimeInvoiceFeed
from notafacil.services.gateway import InvoiceGateway
from notafacil.services.storage import (
    AuthUser,
    InvoiceBackend,
    SubscriptionSetupError,
    SupabaseInvoiceBackend,
)


logger = structlog.get_logger(__name__)


class AppSession:
    """
    The signed-in user's view of the application.

    Args:
        backend: Auth and invoice storage
        gemini_settings: Chatbot/observation configuration
        app_settings: Language and app name
        clock: Today's date, shared by every component
        notifier: Told about rolled-back mutations (e.g. a UI toast)
        chat_session_factory: Overrides the Gemini chat (tests)
        audit_logger: Shared audit trail
    """

    def __init__(
        self,
        backend: InvoiceBackend,
        gemini_settings: Optional[GeminiSettings] = None,
        app_settings: Optional[AppSettings] = None,
        clock: Callable[[], date] = date.today,
        notifier: FailureNotifier = log_failure,
        chat_session_factory: Optional[SessionFactory] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        gemini_settings = gemini_settings or get_settings().gemini
        app_settings = app_settings or get_settings().app

        self._backend = backend
        self._audit = audit_logger or AuditLogger()
        self._user: Optional[AuthUser] = None
        self._feed_error: Optional[SubscriptionSetupError] = None

        self.collection = InvoiceCollection()
        self.gateway = InvoiceGateway(backend)
        self.feed = RealtimeInvoiceFeed(
            backend,
            self.collection,
            clock=clock,
            audit_logger=self._audit,
        )
        self.orchestrator = InvoiceOrchestrator(
            self.collection,
            self.gateway,
            current_user=lambda: self._user,
            clock=clock,
            notifier=notifier,
            audit_logger=self._audit,
        )
        self.dispatcher = InvoiceToolDispatcher(
            self.orchestrator,
            self.collection,
            clock=clock,
            audit_logger=self._audit,
        )
        self.chat_agent = InvoiceChatAgent(
            self.dispatcher,
            gemini_settings,
            session_factory=chat_session_factory,
            language=app_settings.default_language,
            app_name=app_settings.app_name,
            clock=clock,
            audit_logger=self._audit,
        )
        self.observation_writer = ObservationWriter(gemini_settings, audit_logger=self._audit)

    @property
    def user(self) -> Optional[AuthUser]:
        return self._user

    @property
    def user_id(self) -> Optional[str]:
        return self._user.id if self._user else None

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    @property
    def feed_error(self) -> Optional[SubscriptionSetupError]:
        """Why the last feed start failed, or None while the feed is fine."""
        return self._feed_error

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> Optional[AuthUser]:
        """Resume an existing login, if the backend has one."""
        user = await self._backend.get_current_user()
        await self.handle_auth_change(user)
        return user

    async def close(self) -> None:
        await self.feed.stop()

    async def __aenter__(self) -> "AppSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def handle_auth_change(self, user: Optional[AuthUser]) -> None:
        """
        React to the signed-in user changing.

        Calling it again with the same user is a no-op, so it can be
        wired straight to an auth-state callback that fires repeatedly.
        """
        previous = self._user
        if previous is not None and user is not None and previous.id == user.id:
            self._user = user  # Profile fields may have changed
            return
        if previous is None and user is None:
            await self.feed.stop()
            self.collection.clear()
            return

        await self.feed.stop()
        self.chat_agent.reset()
        self._user = user
        self._feed_error = None

        if previous is not None:
            self._audit.log(AuditEventBuilder.session_ended(previous.id))

        if user is None:
            self.collection.clear()
            logger.info("session_ended", user_id=previous.id if previous else None)
            return

        logger.info("session_started", user_id=user.id)
        self._audit.log(AuditEventBuilder.session_started(user.id))
        await self._start_feed()

    async def _start_feed(self) -> None:
        """
        Go live, or stay signed in with an empty collection.

        The feed has already logged and audited the failure and left the
        collection empty; retry with reload().
        """
        self._feed_error = None
        try:
            await self.feed.start()
        except SubscriptionSetupError as e:
            self._feed_error = e
            logger.warning("session_feed_unavailable", user_id=self.user_id, error=str(e))

    async def reload(self) -> None:
        """Restart the feed for the signed-in user, e.g. after a failed start."""
        if self._user is None:
            return
        await self.feed.stop()
        await self._start_feed()

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> AuthUser:
        """
        Sign in with a password and go live.

        A feed that cannot start leaves the user signed in with an empty
        collection; check feed_error and call reload() to retry.
        """
        user = await self._backend.sign_in_with_password(email.strip(), password)
        await self.handle_auth_change(user)
        return user

    async def sign_up(
        self,
        email: str,
        password: str,
        confirm_password: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> Optional[AuthUser]:
        """
        Register a new account.

        Returns None when the account waits for email confirmation.

        Raises:
            ValueError: If confirm_password is given and does not match
        """
        if confirm_password is not None and password != confirm_password:
            raise ValueError("Passwords do not match")

        user = await self._backend.sign_up(email.strip(), password, full_name=full_name)
        if user is not None:
            await self.handle_auth_change(user)
        return user

    async def send_magic_link(self, email: str, redirect_to: Optional[str] = None) -> None:
        await self._backend.sign_in_with_magic_link(email.strip(), redirect_to=redirect_to)
        logger.info("magic_link_sent", redirect_to=redirect_to)

    async def sign_out(self) -> None:
        await self._backend.sign_out()
        await self.handle_auth_change(None)


async def create_app_session(
    notifier: FailureNotifier = log_failure,
) -> AppSession:
    """
    Factory function to create the application session.

    Connects to Supabase using the environment's settings. The chatbot
    and observation writer disable themselves when no Gemini key is set.
    """
    settings = get_settings()
    backend = await SupabaseInvoiceBackend.connect(settings.supabase)
    return AppSession(
        backend,
        gemini_settings=settings.gemini,
        app_settings=settings.app,
        notifier=notifier,
    )
