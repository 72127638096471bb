"""Built-in extensions shipped with ghostctl."""
