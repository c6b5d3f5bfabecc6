"""Service layer talking to the hosted backend on behalf of the storefront."""
