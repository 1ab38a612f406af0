"""In-memory webhook registry: one destination URL per event category."""

import threading

from wabridge.whatsapp.models import CATEGORIES


class UnknownCategoryError(ValueError):
    """Raised when registering a category other than message/status/group."""

    pass


class WebhookRegistry:
    """Category -> URL mapping. Last write wins; nothing is persisted.

    Registration never contacts the URL.
    """

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._lock = threading.Lock()
        self._urls: dict[str, str | None] = {category: None for category in CATEGORIES}
        for category, url in (initial or {}).items():
            self.set(category, url)

    def set(self, category: str, url: str | None) -> dict[str, str | None]:
        """Set (or unset with None) the URL for a category.

        Returns:
            Registry contents after the update.

        Raises:
            UnknownCategoryError: If category is not a known category.
        """
        if category not in self._urls:
            raise UnknownCategoryError(f"unknown webhook category: {category!r}")
        with self._lock:
            self._urls[category] = url or None
            return dict(self._urls)

    def get(self, category: str) -> str | None:
        """URL for a category; None if unset or unknown."""
        with self._lock:
            return self._urls.get(category)

    def snapshot(self) -> dict[str, str | None]:
        with self._lock:
            return dict(self._urls)
