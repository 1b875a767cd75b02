"""Generation orchestration core for structured learning artifacts."""
