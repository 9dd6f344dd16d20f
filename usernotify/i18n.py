"""Locale switching and message translation for composed emails."""

from __future__ import annotations

import gettext
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

TEXT_DOMAIN = "usernotify"


class Translator:
    """Keep track of the active locale and translate strings for it.

    Catalogs are looked up as ``<locale_dir>/<locale>/LC_MESSAGES/usernotify.mo``.
    Missing catalogs fall back to the untranslated message.
    """

    def __init__(self, default_locale: str, *, locale_dir: Optional[Path] = None) -> None:
        self._default_locale = default_locale
        self._locale_dir = locale_dir
        self._current = default_locale
        self._stack: List[str] = []
        self._catalogs: Dict[str, gettext.NullTranslations] = {}
        self._lock = threading.Lock()

    @property
    def current_locale(self) -> str:
        return self._current

    @property
    def default_locale(self) -> str:
        return self._default_locale

    def switch_to_locale(self, locale: str) -> bool:
        """Activate ``locale``; returns ``False`` when it is already active."""

        if not locale or locale == self._current:
            return False
        self._stack.append(self._current)
        self._current = locale
        return True

    def restore_previous_locale(self) -> Optional[str]:
        if not self._stack:
            return None
        self._current = self._stack.pop()
        return self._current

    @contextmanager
    def locale_scope(self, locale: str) -> Iterator[str]:
        switched = self.switch_to_locale(locale)
        try:
            yield self._current
        finally:
            if switched:
                self.restore_previous_locale()

    def gettext(self, message: str) -> str:
        return self._catalog(self._current).gettext(message)

    def _catalog(self, locale: str) -> gettext.NullTranslations:
        with self._lock:
            catalog = self._catalogs.get(locale)
            if catalog is None:
                if self._locale_dir is None:
                    catalog = gettext.NullTranslations()
                else:
                    catalog = gettext.translation(
                        TEXT_DOMAIN,
                        localedir=str(self._locale_dir),
                        languages=[locale],
                        fallback=True,
                    )
                self._catalogs[locale] = catalog
            return catalog


__all__ = ["TEXT_DOMAIN", "Translator"]
