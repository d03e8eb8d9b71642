"""Client-side session controller and HTTP client."""
