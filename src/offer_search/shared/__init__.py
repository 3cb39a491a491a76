"""Cross-cutting helpers shared by every layer of the service."""
