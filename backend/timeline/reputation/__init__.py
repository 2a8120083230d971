"""Reputation scoring with coalesced counter lookups."""
