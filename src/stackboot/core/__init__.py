"""Core building blocks shared by every stackboot component."""
