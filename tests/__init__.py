"""
Tests for endfs

Test suite for the encrypted mirror filesystem:
- Content transform round trips
- Path translation
- Crypto I/O bridge read/write/truncate/create
- Concurrent writers
- Metadata passthrough fidelity
- Command line and audit trail
"""
