"""NEAR event fan-out engine - matches indexer events to subscribed chats."""

__version__ = "0.1.0"
