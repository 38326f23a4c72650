"""Action handlers executed on approval."""
