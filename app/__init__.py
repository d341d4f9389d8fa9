"""Master Order: weighted picks of what to watch or read next."""
