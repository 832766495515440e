"""Client for the GitHub App installation token API."""
