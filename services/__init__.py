"""
Service layer

Pure computation, no state transitions:
- letters_service: SKATE letters and display-name fallbacks
- scoring_service: battle vote scoring
- deadline_service: clock and deadline helpers
- notification_service / analytics_service: outbound descriptors and events
"""
