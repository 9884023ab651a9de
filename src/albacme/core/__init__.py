"""Core types, errors and the polling combinator shared by every subsystem."""
