"""Loop driver: persistence, prompts, commands and CLI for Ralph loops."""
