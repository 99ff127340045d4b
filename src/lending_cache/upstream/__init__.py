"""Clients for the remote ledger / contract interface."""
