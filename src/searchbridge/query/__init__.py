"""Query layer — Option extraction and result normalization shared by all adapters."""
