"""Kernel services: storage, guards, and the transaction processor."""
