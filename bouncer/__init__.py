"""disco-bouncer: anonymous admission of members into a Discord server."""

__version__ = "1.0.0"
