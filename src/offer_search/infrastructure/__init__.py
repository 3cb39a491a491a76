"""Infrastructure adapters: document store, upstream entity services, messaging, logging."""
