"""User-facing API messages."""

SERVICE_UNAVAILABLE = "Service is temporarily unavailable. Please try again later."
SEARCH_COMPLETED = "Search completed"
SEARCH_DEGRADED = "Search completed with degraded stages"
SEARCH_CANCELLED = "Search cancelled by client"
