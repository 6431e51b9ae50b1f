"""Household staff API: credit ledger, usage charging and Stripe billing."""
