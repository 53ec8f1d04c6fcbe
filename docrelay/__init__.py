"""docrelay - compile structured documents into Nostr events and publish them to relays."""

__version__ = "0.3.0"
