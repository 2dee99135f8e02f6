"""Provider selection, adapters and the inference broker."""
