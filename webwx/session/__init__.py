"""Login, long-poll loop, dispatch and session orchestration."""
