"""
contact_mirror - One-way contact mirroring

Reconciles an authoritative remote contact collection onto a local
contact store, keyed by the remote's stable contact id.
"""

__version__ = "0.1.0"
