"""Signal pipeline and score state machines."""
