"""Built-in providers, discovered by conduit.plugins.discovery."""
