"""
Trading bounded context — domain layer.

- Currency normalization (Money, EUR rate tables)
- Alert evaluation state machine
- Signal rule engine
- Trading asset lifecycle
- Suggestion scoring
"""
