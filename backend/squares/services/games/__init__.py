"""Game domain services: grid locking, score resolution and payouts.

This package contains pure(ish) domain logic that should be imported by
HTTP routes and socket handlers, keeping transport concerns separated
from core game mechanics.
"""
