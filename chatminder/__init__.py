"""chatminder — chat assistant bot with durable reminders and digests."""

__version__ = "0.3.0"
