"""LorePin CMS: moderation queue, content analysis and challenge workflow"""
