"""Runtime business settings stored in the database."""
