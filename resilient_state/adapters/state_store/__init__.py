"""State store adapters.

Two backends sit behind the state service: a shared Redis-compatible store
reached over REST (cross-process truth) and an in-process expiring map that
is always available. Callers never pick one directly; the facade in
``resilient_state.services.state_service`` does.
"""
