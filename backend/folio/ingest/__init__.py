"""Broker file parsing."""
