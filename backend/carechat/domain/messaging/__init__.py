"""Messaging domain: threads, messages, attachments and per-user overlays."""
