"""Announcement, compensation and whitelist panel for a game server."""
