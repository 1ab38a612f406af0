"""Tests for the in-memory webhook registry."""

import pytest

from wabridge.webhooks.registry import UnknownCategoryError, WebhookRegistry


def test_starts_empty():
    assert WebhookRegistry().snapshot() == {"message": None, "status": None, "group": None}


def test_initial_urls():
    registry = WebhookRegistry({"status": "https://x.example.com/s"})
    assert registry.get("status") == "https://x.example.com/s"
    assert registry.get("message") is None


def test_set_returns_contents():
    urls = WebhookRegistry().set("message", "https://x/y")
    assert urls == {"message": "https://x/y", "status": None, "group": None}


def test_empty_url_unsets():
    registry = WebhookRegistry({"group": "https://x/g"})
    registry.set("group", "")
    assert registry.get("group") is None


def test_unknown_category_rejected():
    with pytest.raises(UnknownCategoryError):
        WebhookRegistry().set("presence", "https://x/y")


def test_unknown_category_lookup_is_none():
    assert WebhookRegistry().get("presence") is None


def test_snapshot_is_a_copy():
    registry = WebhookRegistry()
    snapshot = registry.snapshot()
    snapshot["message"] = "https://tampered"
    assert registry.get("message") is None
