"""Conversation pipeline services."""
