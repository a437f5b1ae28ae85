"""Reconciliation services: ledger, identity, conversion, claims, payouts"""
