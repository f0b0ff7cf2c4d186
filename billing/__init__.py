"""Billing application for the hospital backend.

Bills, their line items and the append-only payment ledger, together
with the patient registry, service catalog, reports and realtime
updates built around them.
"""
