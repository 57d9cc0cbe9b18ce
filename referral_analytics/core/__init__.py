"""Shared record types, settings and UTC day-key helpers."""
