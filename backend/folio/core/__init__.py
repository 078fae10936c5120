"""Cross-cutting helpers: logging, telemetry, errors and decimal arithmetic."""
