"""HTTP interface for the chat assistant."""
