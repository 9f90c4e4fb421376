"""mcp-safe-run - Secure launcher for MCP servers.

Resolves credentials from environment variables, files and the OS keyring,
then runs the target command with them injected into its environment.
"""

__version__ = "0.1.0"
