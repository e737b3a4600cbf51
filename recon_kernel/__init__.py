"""
recon_kernel -- Shared infrastructure for the reconciliation engine.

Provides the declarative ORM base, the injectable Clock, structured JSON
logging, and the typed exception hierarchy.  Nothing in this package
imports from recon_batch or recon_config.
"""
