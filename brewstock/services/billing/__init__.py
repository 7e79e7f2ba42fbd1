"""Subscription lifecycle and proration engine."""
