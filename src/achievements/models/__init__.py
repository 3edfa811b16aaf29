"""Domain models — submissions, content documents, directory entities."""
