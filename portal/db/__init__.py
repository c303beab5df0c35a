"""Postgres-backed (and in-memory) identity and session stores."""
