"""Team fitness leaderboard: composite workout scoring and ranking, served over MCP."""

__version__ = "0.1.0"
