"""Timeline engine: paging, search correlation, filtering, live updates and selection."""
