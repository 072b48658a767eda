"""Backup bundles: production, encryption, verification and retention."""
