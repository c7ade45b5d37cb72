"""ASGI glue binding request headers to the ambient audit context."""
