"""Auth module — bearer-token identity and role gates for the leave API."""
