"""Streaming chat relay service."""
