"""Patient flow engine: triage, queue coordination and appointment scheduling."""
