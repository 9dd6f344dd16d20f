"""Admin settings page and registration endpoint for the notification service."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Form, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field, field_validator
from starlette.middleware.sessions import SessionMiddleware

from .config import AppConfig, load_config, resolve_config_path
from .database import Database, resolve_database_path
from .i18n import Translator
from .mailer import Mailer, build_mailer
from .models import Account
from .notifications import NotificationComposer, WrapHook, generate_password, resolve_hook
from .security import AdminAuth
from .settings import NotificationSettings

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

PAGE_TITLE = "New User Notifications Configuration"
MENU_TITLE = "User Notifications"

logger = logging.getLogger("usernotify.web")


class RegistrationRequest(BaseModel):
    login: str = Field(..., min_length=1, max_length=60)
    email: str = Field(..., min_length=3, max_length=255)
    first_name: str = Field(default="", max_length=255)
    locale: str = Field(default="", max_length=32)
    notify: str = Field(default="both", pattern="^(|admin|user|both)$")

    @field_validator("login", "email", "first_name", "locale")
    @classmethod
    def _single_line(cls, value: str) -> str:
        if "\r" in value or "\n" in value:
            raise ValueError("must not contain line breaks")
        return value.strip()

    @field_validator("email")
    @classmethod
    def _email_address(cls, value: str) -> str:
        local, sep, domain = value.partition("@")
        if not sep or not local or not domain or "@" in domain or any(ch.isspace() for ch in value):
            raise ValueError("must be a single email address")
        return value


class AccountView(BaseModel):
    id: int
    login: str
    email: str
    first_name: str
    locale: str


def _account_view(account: Account) -> AccountView:
    return AccountView(
        id=account.id,
        login=account.login,
        email=account.email,
        first_name=account.first_name,
        locale=account.locale,
    )


def create_app(
    *,
    config: Optional[AppConfig] = None,
    database: Optional[Database] = None,
    mailer: Optional[Mailer] = None,
    session_secret: Optional[str] = None,
    initialize_database: bool = False,
    wrap_email: Optional[WrapHook] = None,
    generate_key: Callable[[], str] = generate_password,
) -> FastAPI:
    """Create the notification settings web application."""

    if config is None:
        config = load_config(resolve_config_path(os.getenv("USERNOTIFY_CONFIG")))

    if database is None:
        db_path = resolve_database_path(os.getenv("USERNOTIFY_DB_PATH"))
        database = Database(db_path)
        database.initialize()
    elif initialize_database:
        database.initialize()

    if session_secret is None:
        session_secret = os.getenv("USERNOTIFY_SESSION_SECRET")
    if not session_secret:
        raise RuntimeError("USERNOTIFY_SESSION_SECRET must be configured to use the settings interface")

    if mailer is None:
        mailer = build_mailer(config.mail)
    if wrap_email is None:
        wrap_email = resolve_hook(config.wrap_email)

    translator = Translator(config.site.locale, locale_dir=config.locale_dir)
    composer = NotificationComposer(
        database,
        mailer,
        config.site,
        translator=translator,
        wrap_email=wrap_email,
        generate_key=generate_key,
    )
    settings = NotificationSettings(database)
    require_admin = AdminAuth(config.admin)

    app = FastAPI(
        title="User Notification Settings",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.database = database
    app.state.mailer = mailer
    app.state.composer = composer
    app.state.config = config

    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        session_cookie="usernotify_session",
        same_site="lax",
    )

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

    def _flash(request: Request, message: str, *, category: str = "info") -> None:
        messages = request.session.get("flash_messages")
        if not isinstance(messages, list):
            messages = []
        messages.append({"message": message, "category": category})
        request.session["flash_messages"] = messages

    def _consume_flash(request: Request) -> List[Dict[str, str]]:
        messages = request.session.pop("flash_messages", [])
        if isinstance(messages, list):
            return messages
        return []

    @app.get("/settings/user-notifications", response_class=HTMLResponse, name="notification_settings")
    async def show_settings(request: Request, _: str = Depends(require_admin)):
        current = settings.load()
        return templates.TemplateResponse(
            request,
            "settings.html",
            {
                "page_title": PAGE_TITLE,
                "heading": MENU_TITLE,
                "messages": _consume_flash(request),
                "form_action": request.url_for("save_notification_settings"),
                "login_slug": current.login_slug or "",
                "reset_slug": current.reset_slug or "",
            },
        )

    @app.post("/settings/user-notifications", name="save_notification_settings")
    async def save_settings(
        request: Request,
        login_slug: str = Form(""),
        reset_slug: str = Form(""),
        admin: str = Depends(require_admin),
    ):
        saved = settings.save(login_slug=login_slug, reset_slug=reset_slug)
        logger.info("Notification settings updated by %s: %s", admin, saved.as_mapping())
        _flash(request, "Settings saved.", category="success")
        return RedirectResponse(
            request.url_for("notification_settings"),
            status_code=status.HTTP_303_SEE_OTHER,
        )

    @app.post("/users", status_code=status.HTTP_201_CREATED, response_model=AccountView)
    def register_user(payload: RegistrationRequest, _: str = Depends(require_admin)):
        try:
            account = database.create_user(
                payload.login,
                payload.email,
                first_name=payload.first_name,
                locale=payload.locale,
            )
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

        logger.info("Registered account %s (%s)", account.login, account.id)
        composer.notify(account.id, notify=payload.notify)
        return _account_view(account)

    return app


__all__ = ["create_app", "PAGE_TITLE", "MENU_TITLE"]
