"""Database plumbing: declarative base, engine/session factories, repositories."""
