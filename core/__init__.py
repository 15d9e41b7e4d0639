"""
Core game logic

This package holds every state transition:
- State machine: legal contest status / phase moves
- Managers: duel and battle engines, one transaction per action
- Reconciler: periodic timeout resolution
- Ledger / Locks / Store: idempotency and concurrency primitives
"""
