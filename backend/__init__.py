"""HTTP inspector for a shared-folder mailbox."""
