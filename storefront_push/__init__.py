"""Web Push delivery engine for the storefront."""
