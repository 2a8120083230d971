"""Merged original/repost feed."""
