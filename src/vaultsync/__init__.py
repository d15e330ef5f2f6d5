"""vaultsync — keep a local vault in sync with a single remote git repository."""
