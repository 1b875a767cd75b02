"""AI response handling, routing, and providers."""
