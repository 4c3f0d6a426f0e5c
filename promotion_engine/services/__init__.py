"""Domain services: session store, class catalog, student directory, promotion executor and history ledger."""
