"""
Keyword Monitor - tracks tenant search terms on Reddit and records new mentions.
"""
