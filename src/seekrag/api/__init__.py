"""HTTP API for SeekRAG."""
