"""Core building blocks: configuration, logging, locking and the retention evaluator."""
