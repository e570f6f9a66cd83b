"""
contact_mirror.sync - Reconciliation core

Contact model, field mapping, correlation, batch building and the sync engine.
"""
