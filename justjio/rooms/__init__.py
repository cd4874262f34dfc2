"""Rooms module: rooms, attendees and chat history (server side)."""
