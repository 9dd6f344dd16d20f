"""Compose and send the notifications that follow a new account registration."""

from __future__ import annotations

import html
import importlib
import logging
import secrets
import string
import warnings
from typing import Callable, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote, urlsplit, urlunsplit

from .config import SiteConfig
from .database import Database
from .i18n import Translator
from .mailer import MailDeliveryError, Mailer
from .models import Account, ComposedMessage, ResetLinkConfig
from .settings import NotificationSettings

logger = logging.getLogger("usernotify.notifications")

RESET_KEY_LENGTH = 20
HTML_HEADERS: Tuple[str, ...] = ("Content-Type: text/html; charset=UTF-8",)

WrapHook = Callable[[str], str]
KeyListener = Callable[[str, str], None]

_KEY_ALPHABET = string.ascii_letters + string.digits


def generate_password(length: int = RESET_KEY_LENGTH) -> str:
    """Return a random string of letters and digits."""

    return "".join(secrets.choice(_KEY_ALPHABET) for _ in range(length))


def resolve_hook(path: Optional[str]) -> Optional[WrapHook]:
    """Import ``module:function`` (or ``module.function``) and return the callable."""

    if not path:
        return None
    if ":" in path:
        module_name, _, attribute = path.partition(":")
    else:
        module_name, _, attribute = path.rpartition(".")
    if not module_name or not attribute:
        raise ValueError(f"Invalid hook path '{path}'")
    module = importlib.import_module(module_name)
    hook = getattr(module, attribute, None)
    if not callable(hook):
        raise ValueError(f"Hook '{path}' is not callable")
    return hook


def add_query_args(url: str, args: Sequence[Tuple[str, str]]) -> str:
    """Append ``key=value`` pairs to ``url`` without re-encoding the values."""

    scheme, netloc, path, query, fragment = urlsplit(url)
    pairs = [f"{name}={value}" for name, value in args]
    query = "&".join(part for part in [query, *pairs] if part)
    return urlunsplit((scheme, netloc, path, query, fragment))


def _is_empty(value: object) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return value in ("", "0")
    if isinstance(value, (int, float)):
        return value == 0
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _identity(message: str) -> str:
    return message


class NotificationComposer:
    """Send the admin and user emails for a freshly created account."""

    def __init__(
        self,
        database: Database,
        mailer: Mailer,
        site: SiteConfig,
        *,
        translator: Optional[Translator] = None,
        wrap_email: Optional[WrapHook] = None,
        generate_key: Callable[[], str] = generate_password,
        key_listeners: Iterable[KeyListener] = (),
    ) -> None:
        self._database = database
        self._mailer = mailer
        self._site = site
        self._translator = translator or Translator(site.locale)
        self._wrap_email: WrapHook = wrap_email or _identity
        self._generate_key = generate_key
        self._key_listeners: List[KeyListener] = list(key_listeners)
        self._settings = NotificationSettings(database)

    def add_key_listener(self, listener: KeyListener) -> None:
        """Register a callback receiving ``(login, key)`` for each generated reset key."""

        self._key_listeners.append(listener)

    def notify(self, account_id: int, deprecated: object = None, notify: str = "") -> None:
        """Email login details to a new account and announce it to the site admin.

        ``notify`` accepts ``"admin"`` or ``""`` (admin only), ``"user"`` or
        ``"both"``. ``deprecated`` is the former plaintext password argument;
        when it is empty and ``notify`` is empty only the admin is notified.
        """

        if deprecated is not None:
            warnings.warn(
                "The 'deprecated' argument of notify() is no longer used.",
                DeprecationWarning,
                stacklevel=2,
            )
            logger.warning("notify() called with the deprecated argument for account %s", account_id)

        account = self._database.get_user(account_id)
        if account is None:
            raise LookupError(f"Unknown account {account_id}")

        blogname = html.unescape(self._site.name)

        if notify != "user":
            with self._translator.locale_scope(self._site.locale):
                self._deliver(self._compose_admin_message(account, blogname))

        # An empty deprecated argument used to mean "no password was generated"; skip the user.
        if notify == "admin" or (_is_empty(deprecated) and not notify):
            return

        key = self._generate_key()
        for listener in self._key_listeners:
            listener(account.login, key)
        self._database.store_activation_key(account.login, key)

        with self._translator.locale_scope(account.locale or self._site.locale):
            self._deliver(self._compose_user_message(account, blogname, key))

    def _compose_admin_message(self, account: Account, blogname: str) -> ComposedMessage:
        _ = self._translator.gettext
        message = _("<p>New user registration on your site %s:</p>") % blogname
        message += _("<p>Username: %s</p>") % account.login
        message += _("<p>Email: %s</p>") % account.email
        return ComposedMessage(
            recipient=self._site.admin_email,
            subject=_("[%s] New User Registration") % blogname,
            body=self._wrap_email(message),
        )

    def _compose_user_message(self, account: Account, blogname: str, key: str) -> ComposedMessage:
        _ = self._translator.gettext
        if account.first_name:
            message = _("<p>Hi %s,</p>") % account.first_name
        else:
            message = _("<p>Welcome new user,</p>")
        message += _("<p>Thank you for registering with %s. Your username is shown below.</p>") % blogname
        message += _("<p>Username: %s</p>") % account.login
        message += _("<p>To set your password, visit the following address:</p>")

        links = self._settings.load()
        message += self._reset_link(links, key, account.login)
        message += _("<p>You can log into the site using the link below:</p>")
        message += self._login_link(links)

        return ComposedMessage(
            recipient=account.email,
            subject=_("[%s] Your username and password info") % blogname,
            body=self._wrap_email(message),
            headers=HTML_HEADERS,
        )

    def _reset_link(self, links: ResetLinkConfig, key: str, login: str) -> str:
        encoded_login = quote(login, safe="")
        if links.reset_slug is not None:
            return add_query_args(
                self._site.home(links.reset_slug),
                [("action", "rp"), ("key", key), ("login", encoded_login)],
            )
        url = self._site.site(f"{self._site.reset_path}?action=rp&key={key}&login={encoded_login}")
        return f"<{url}>\r\n\r\n"

    def _login_link(self, links: ResetLinkConfig) -> str:
        if links.login_slug is not None:
            return self._site.home(links.login_slug)
        return f"<p>{self._site.login_url}</p>\r\n"

    def _deliver(self, message: ComposedMessage) -> None:
        try:
            self._mailer.send(message)
        except MailDeliveryError as exc:
            logger.debug("Suppressed mail delivery failure for %s: %s", message.recipient, exc)


__all__ = [
    "HTML_HEADERS",
    "NotificationComposer",
    "RESET_KEY_LENGTH",
    "add_query_args",
    "generate_password",
    "resolve_hook",
]
