"""Registry protocol core: auth, session, client."""
