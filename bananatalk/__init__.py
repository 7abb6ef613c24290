"""Quota gate, entitlement, scheduled jobs and media validation for the BananaTalk backend."""
