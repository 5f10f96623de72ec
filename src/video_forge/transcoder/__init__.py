"""Transcode queue: storage, scheduling, progress and encoder integration."""
