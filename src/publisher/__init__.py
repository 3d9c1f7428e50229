"""
Publisher package: turns synced photo metadata into Telegram MarkdownV2
captions and posts, edits or reports them through the Bot API.
"""
