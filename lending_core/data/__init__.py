"""Protocol constants, collaborator interfaces, request cache and storage."""
