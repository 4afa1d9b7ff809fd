"""Core building blocks: data types, normalization, caching, retry, profiling, splitting."""
