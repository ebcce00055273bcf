"""Turn streaming, decision handling and backend access for the E-pilot client."""
