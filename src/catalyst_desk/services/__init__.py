"""External-service adapters (LLM providers)."""
