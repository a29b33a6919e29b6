"""Outbound event notifications."""
