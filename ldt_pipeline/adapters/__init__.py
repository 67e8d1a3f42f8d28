"""Adapters layer for the LDT ingestion pipeline.

This module contains the adapters that implement the domain ports: payload
readers, the identity directory and the ledger / quarantine / result stores.
"""
