"""Visit counter: total, unique and per-visitor hits persisted to a JSON file."""
