# tofuchat Test Suite
"""
Test suite including:
- Unit tests per component
- Integration tests through ChatService and ChatClient
- Security tests (invalid inputs, impersonation, tampering)

Run with: pytest
"""
