"""Producer/consumer plumbing and event types."""
