"""Input schemas for the engine facade (accept Spanish and English field names)."""
