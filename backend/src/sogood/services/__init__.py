"""Pipeline services: resolution, prompting, model calls, coverage repair."""
