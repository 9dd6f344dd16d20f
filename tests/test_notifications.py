from __future__ import annotations

import re
import sqlite3
import sys
import warnings
from pathlib import Path
from typing import List, Tuple
from unittest import mock
from urllib.parse import parse_qs, urlsplit

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from usernotify.config import MailConfig, SiteConfig
from usernotify.database import Database
from usernotify.i18n import Translator
from usernotify.mailer import MailDeliveryError, MemoryMailer, SMTPMailer
from usernotify.models import ComposedMessage
from usernotify.notifications import (
    HTML_HEADERS,
    NotificationComposer,
    add_query_args,
    generate_password,
    resolve_hook,
)
from usernotify.settings import NotificationSettings


KEY = "AbCdEfGhIj0123456789"
ADMIN_EMAIL = "admin@example.com"


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "usernotify.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def site() -> SiteConfig:
    return SiteConfig(name="Example Site", home_url="https://example.com", admin_email=ADMIN_EMAIL)


@pytest.fixture()
def mailer() -> MemoryMailer:
    return MemoryMailer()


@pytest.fixture()
def composer(database: Database, mailer: MemoryMailer, site: SiteConfig) -> NotificationComposer:
    return NotificationComposer(database, mailer, site, generate_key=lambda: KEY)


@pytest.fixture()
def alice(database: Database):
    return database.create_user("alice", "alice@x.com", first_name="", locale="en")


def _recipients(mailer: MemoryMailer) -> List[str]:
    return [message.recipient for message in mailer.outbox]


def _user_message(mailer: MemoryMailer) -> ComposedMessage:
    messages = [message for message in mailer.outbox if message.recipient != ADMIN_EMAIL]
    assert len(messages) == 1
    return messages[0]


@pytest.mark.parametrize("mode", ["", "admin"])
def test_admin_only_modes_skip_user_email(composer, mailer, database, alice, mode) -> None:
    composer.notify(alice.id, notify=mode)

    assert _recipients(mailer) == [ADMIN_EMAIL]
    assert not database.verify_activation_key("alice", KEY)


def test_both_mode_sends_admin_then_user(composer, mailer, alice) -> None:
    composer.notify(alice.id, notify="both")

    assert _recipients(mailer) == [ADMIN_EMAIL, "alice@x.com"]


def test_user_mode_sends_only_user_email(composer, mailer, alice) -> None:
    composer.notify(alice.id, notify="user")

    assert _recipients(mailer) == ["alice@x.com"]


def test_truthy_legacy_argument_with_empty_mode_sends_both(composer, mailer, alice) -> None:
    with pytest.warns(DeprecationWarning):
        composer.notify(alice.id, "plaintext-password", "")

    assert _recipients(mailer) == [ADMIN_EMAIL, "alice@x.com"]


@pytest.mark.parametrize("legacy", ["", "0", 0, False])
def test_empty_legacy_argument_still_warns_but_only_notifies_admin(composer, mailer, alice, legacy) -> None:
    with pytest.warns(DeprecationWarning):
        composer.notify(alice.id, legacy, "")

    assert _recipients(mailer) == [ADMIN_EMAIL]


def test_admin_mode_ignores_truthy_legacy_argument(composer, mailer, alice) -> None:
    with pytest.warns(DeprecationWarning):
        composer.notify(alice.id, "plaintext-password", "admin")

    assert _recipients(mailer) == [ADMIN_EMAIL]


def test_no_warning_without_legacy_argument(composer, alice) -> None:
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        composer.notify(alice.id, notify="admin")


def test_admin_message_content(composer, mailer, alice) -> None:
    composer.notify(alice.id)

    (message,) = mailer.outbox
    assert message.subject == "[Example Site] New User Registration"
    assert message.body == (
        "<p>New user registration on your site Example Site:</p>"
        "<p>Username: alice</p>"
        "<p>Email: alice@x.com</p>"
    )
    assert message.headers == ()


def test_site_name_entities_are_decoded(database, mailer, alice) -> None:
    site = SiteConfig(name="Tom &amp; Jerry", home_url="https://example.com", admin_email=ADMIN_EMAIL)
    composer = NotificationComposer(database, mailer, site, generate_key=lambda: KEY)

    composer.notify(alice.id, notify="both")

    assert [m.subject for m in mailer.outbox] == [
        "[Tom & Jerry] New User Registration",
        "[Tom & Jerry] Your username and password info",
    ]


def test_user_message_defaults(composer, mailer, alice) -> None:
    composer.notify(alice.id, notify="user")

    message = _user_message(mailer)
    assert message.subject == "[Example Site] Your username and password info"
    assert message.headers == HTML_HEADERS
    assert message.body == (
        "<p>Welcome new user,</p>"
        "<p>Thank you for registering with Example Site. Your username is shown below.</p>"
        "<p>Username: alice</p>"
        "<p>To set your password, visit the following address:</p>"
        f"<https://example.com/reset-password?action=rp&key={KEY}&login=alice>\r\n\r\n"
        "<p>You can log into the site using the link below:</p>"
        "<p>https://example.com/login</p>\r\n"
    )


def test_user_message_greets_by_first_name(composer, mailer, database) -> None:
    account = database.create_user("bob", "bob@example.com", first_name="Bob")

    composer.notify(account.id, notify="user")

    assert _user_message(mailer).body.startswith("<p>Hi Bob,</p>")


def test_custom_reset_slug_builds_query_link(composer, mailer, database) -> None:
    account = database.create_user("jane doe+1", "jane@example.com")
    NotificationSettings(database).save(login_slug=None, reset_slug="custom-reset")

    composer.notify(account.id, notify="user")

    body = _user_message(mailer).body
    match = re.search(r"(https://example\.com/custom-reset\?[^<\s]*)", body)
    assert match is not None
    parts = urlsplit(match.group(1))
    assert parts.path == "/custom-reset"
    assert "login=jane%20doe%2B1" in parts.query
    assert parse_qs(parts.query) == {
        "action": ["rp"],
        "key": [KEY],
        "login": ["jane doe+1"],
    }
    assert "reset-password" not in body


def test_custom_login_slug_is_linked_verbatim(composer, mailer, database, alice) -> None:
    NotificationSettings(database).save(login_slug="my-login", reset_slug=None)

    composer.notify(alice.id, notify="user")

    body = _user_message(mailer).body
    assert body.endswith("<p>You can log into the site using the link below:</p>https://example.com/my-login")
    assert f"<https://example.com/reset-password?action=rp&key={KEY}&login=alice>" in body


def test_alice_scenario_with_both_slugs(composer, mailer, database, alice) -> None:
    NotificationSettings(database).save(login_slug="my-login", reset_slug="my-reset")

    composer.notify(alice.id, notify="both")

    assert len(mailer.outbox) == 2
    body = _user_message(mailer).body
    assert f"https://example.com/my-reset?action=rp&key={KEY}&login=alice" in body
    assert body.endswith("https://example.com/my-login")


def test_alice_scenario_default_mode(composer, mailer, alice) -> None:
    composer.notify(alice.id, None, "")

    assert _recipients(mailer) == [ADMIN_EMAIL]


def test_reset_key_is_persisted_hashed(composer, database, alice) -> None:
    composer.notify(alice.id, notify="user")

    assert database.verify_activation_key("alice", KEY)
    assert not database.verify_activation_key("alice", "wrong-key")


def test_key_listeners_receive_login_and_key(composer, alice) -> None:
    received: List[Tuple[str, str]] = []
    composer.add_key_listener(lambda login, key: received.append((login, key)))

    composer.notify(alice.id, notify="both")

    assert received == [("alice", KEY)]


def test_wrap_hook_applies_to_both_messages(database, mailer, site, alice) -> None:
    composer = NotificationComposer(
        database,
        mailer,
        site,
        wrap_email=lambda body: f"<html>{body}</html>",
        generate_key=lambda: KEY,
    )

    composer.notify(alice.id, notify="both")

    for message in mailer.outbox:
        assert message.body.startswith("<html><p>")
        assert message.body.endswith("</html>")


class _FailingMailer:
    def __init__(self) -> None:
        self.attempts: List[ComposedMessage] = []

    def send(self, message: ComposedMessage) -> None:
        self.attempts.append(message)
        raise MailDeliveryError("connection refused")


def test_mail_failures_are_suppressed(database, site, alice) -> None:
    mailer = _FailingMailer()
    composer = NotificationComposer(database, mailer, site, generate_key=lambda: KEY)

    composer.notify(alice.id, notify="both")

    assert [m.recipient for m in mailer.attempts] == [ADMIN_EMAIL, "alice@x.com"]
    assert database.verify_activation_key("alice", KEY)


def test_unusable_recipient_does_not_escape_notify(database, site) -> None:
    account = database.create_user("eve", "eve@x.com\nBcc: other@x.com")
    mailer = SMTPMailer(MailConfig(backend="smtp", host="smtp.example.com", port=587))
    composer = NotificationComposer(database, mailer, site, generate_key=lambda: KEY)

    with mock.patch("usernotify.mailer.smtplib.SMTP") as smtp_cls:
        composer.notify(account.id, notify="both")

    assert smtp_cls.return_value.send_message.call_count == 1
    assert database.verify_activation_key("eve", KEY)


def test_key_persistence_failure_propagates(composer, mailer, database, alice, monkeypatch) -> None:
    def broken_store(login: str, key: str) -> str:
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(database, "store_activation_key", broken_store)

    with pytest.raises(sqlite3.OperationalError):
        composer.notify(alice.id, notify="both")

    assert _recipients(mailer) == [ADMIN_EMAIL]


def test_unknown_account_raises_lookup_error(composer) -> None:
    with pytest.raises(LookupError):
        composer.notify(9999, notify="both")


class _RecordingTranslator(Translator):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.events: List[Tuple[str, str]] = []

    def switch_to_locale(self, locale: str) -> bool:
        switched = super().switch_to_locale(locale)
        self.events.append(("switch", locale if switched else ""))
        return switched

    def restore_previous_locale(self):
        restored = super().restore_previous_locale()
        self.events.append(("restore", restored or ""))
        return restored


def test_locale_scopes_are_sequential_and_restored(database, site) -> None:
    translator = _RecordingTranslator("en_GB")
    sent_in: List[str] = []

    class LocaleMailer:
        def send(self, message: ComposedMessage) -> None:
            sent_in.append(translator.current_locale)
            raise MailDeliveryError("unavailable")

    account = database.create_user("klaus", "klaus@example.de", locale="de_DE")
    composer = NotificationComposer(
        database,
        LocaleMailer(),
        site,
        translator=translator,
        generate_key=lambda: KEY,
    )

    composer.notify(account.id, notify="both")

    assert translator.events == [
        ("switch", "en_US"),
        ("restore", "en_GB"),
        ("switch", "de_DE"),
        ("restore", "en_GB"),
    ]
    assert sent_in == ["en_US", "de_DE"]
    assert translator.current_locale == "en_GB"


def test_account_without_locale_uses_site_locale(database, site) -> None:
    translator = _RecordingTranslator("en_GB")
    account = database.create_user("nolocale", "nolocale@example.com")
    composer = NotificationComposer(
        database, MemoryMailer(), site, translator=translator, generate_key=lambda: KEY
    )

    composer.notify(account.id, notify="user")

    assert translator.events == [("switch", "en_US"), ("restore", "en_GB")]


def test_generate_password_is_alphanumeric() -> None:
    key = generate_password()

    assert len(key) == 20
    assert key.isalnum()


def test_add_query_args_keeps_existing_query() -> None:
    url = add_query_args("https://example.com/reset?lang=en", [("action", "rp"), ("login", "a%20b")])

    assert url == "https://example.com/reset?lang=en&action=rp&login=a%20b"


def test_resolve_hook_imports_callables() -> None:
    assert resolve_hook(None) is None
    unescape = resolve_hook("html:unescape")
    assert unescape("&amp;") == "&"
    assert resolve_hook("html.escape")("&") == "&amp;"

    with pytest.raises(ValueError):
        resolve_hook("html:__name__")
