"""Domain services backing the AudioScholar HTTP API."""
