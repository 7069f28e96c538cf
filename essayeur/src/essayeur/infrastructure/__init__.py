"""
Default collaborators: local node, JSON-RPC client, solc, artifacts,
migrations.
"""
