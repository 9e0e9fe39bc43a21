"""Persistence — atomic files, secrets store, artifacts, apply lock, audit ledger."""
