"""Status adapters: executables that translate an upstream API into the check contract."""
