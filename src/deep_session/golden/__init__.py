"""Golden-session regression tooling.

Replays fixed fixtures through the session runner, normalizes each run
into a stable projection, checks structural invariants and compares the
projection against a committed snapshot.
"""
