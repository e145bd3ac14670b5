"""Asyncio TCP listener."""
