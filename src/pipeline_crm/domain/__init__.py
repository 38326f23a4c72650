"""CRM entities agents read and mutate."""
