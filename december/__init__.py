"""December: backend for an AI coding assistant working on Next.js sandboxes.

This package contains:
- A provider registry and request formatter for OpenAI-compatible LLM endpoints
- In-memory chat sessions and the chat orchestrator (plain and streamed)
- Local sandbox provisioning, file access and command execution
- The FastAPI application exposing all of the above
"""
