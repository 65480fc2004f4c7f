"""Discord relay for Copilot Studio agents."""
